from cmpkit.api.main import app

if __name__ == "__main__":
    import logging
    import os

    import uvicorn

    from cmpkit.core.config import EngineConfig

    logging.basicConfig(level=EngineConfig.from_env().log_level)
    host = os.getenv("CMPKIT_HOST", "0.0.0.0")
    port = int(os.getenv("CMPKIT_PORT", "8001"))
    uvicorn.run(app, host=host, port=port)
