import pytest

RIG_CATALOG = {
    "components": [
        {"name": "Camera", "ports": [{"name": "frame", "direction": "output", "type": "Image"}]},
        {"name": "FrontCamera", "parent": "Camera"},
        {"name": "Imu", "ports": [{"name": "accel", "direction": "output", "type": "Vector"}]},
        {"name": "FastImu", "parent": "Imu"},
    ],
    "compositions": [
        {
            "name": "Rig",
            "children": [
                {"name": "camera", "models": ["Camera"]},
                {"name": "imu", "models": ["Imu"]},
            ],
            "specializations": [
                {"children": {"camera": ["FrontCamera"]}},
                {"children": {"imu": ["FastImu"]}, "not": {"camera": ["FrontCamera"]}},
            ],
        }
    ],
}


@pytest.fixture()
def nav_client(client, nav_catalog):
    r = client.post("/api/v1/catalog", json=nav_catalog)
    assert r.status_code == 200
    return client


@pytest.fixture()
def rig_client(client):
    r = client.post("/api/v1/catalog", json=RIG_CATALOG)
    assert r.status_code == 200
    return client


def test_requires_a_catalog(client):
    r = client.get("/api/v1/models")
    assert r.status_code == 404
    assert r.json()["code"] == "no_catalog"


def test_load_and_clear(client, nav_catalog):
    r = client.post("/api/v1/catalog", json=nav_catalog)
    assert r.status_code == 200
    assert r.json() == {
        "status": "loaded",
        "services": ["PositionProvider", "Controller"],
        "components": ["GPS", "PID"],
        "compositions": ["Nav"],
        "models": 5,
    }
    assert client.get("/api/v1/metrics/snapshot").json()["catalog_loaded"] == 1

    assert client.delete("/api/v1/catalog").json() == {"status": "cleared"}
    assert client.get("/api/v1/models").status_code == 404


def test_invalid_catalog_shape_is_rejected(client):
    r = client.post("/api/v1/catalog", json={"services": "nope"})
    assert r.status_code == 422


def test_invalid_catalog_keeps_the_previous_one(nav_client):
    r = nav_client.post("/api/v1/catalog", json={"components": [{"name": "RTKGps", "parent": "GPS"}]})
    assert r.status_code == 404
    assert r.json()["code"] == "unknown_model"
    assert nav_client.get("/api/v1/models/GPS").status_code == 200


def test_models(nav_client):
    r = nav_client.get("/api/v1/models", params={"kind": "composition"})
    assert [m["name"] for m in r.json()["models"]] == ["Nav"]

    gps = nav_client.get("/api/v1/models/GPS").json()
    assert gps["kind"] == "component"
    assert gps["provides"] == ["PositionProvider"]
    assert gps["services"] == {"PositionProvider": {"service": "PositionProvider", "mapping": {"pose": "gps_pose"}}}

    r = nav_client.get("/api/v1/models/Lidar")
    assert r.status_code == 404
    assert r.json()["code"] == "unknown_model"


def test_port_mappings(nav_client):
    r = nav_client.get("/api/v1/models/GPS/port-mappings", params={"ancestor": "PositionProvider"})
    assert r.status_code == 200
    assert r.json() == {"model": "GPS", "ancestor": "PositionProvider", "mapping": {"pose": "gps_pose"}}

    r = nav_client.get("/api/v1/models/PID/port-mappings", params={"ancestor": "PositionProvider"})
    assert r.status_code == 404
    assert r.json()["code"] == "service_not_provided"


def test_connections(nav_client):
    r = nav_client.get("/api/v1/compositions/Nav/connections")
    assert r.json() == {
        "model": "Nav",
        "connections": [{"source": "odometry.pose", "sink": "controller.pose_in", "policy": {}}],
    }

    r = nav_client.get("/api/v1/compositions/GPS/connections")
    assert r.status_code == 422
    assert r.json()["code"] == "catalog_error"


def test_instantiate(nav_client):
    r = nav_client.post(
        "/api/v1/compositions/Nav/instantiate",
        json={"selection": {"odometry": "GPS", "controller": "PID"}},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["model"] == "Nav"

    tasks = {t["id"]: t["model"] for t in body["plan"]["tasks"]}
    assert tasks[body["root"]] == "Nav"
    [conn] = body["plan"]["connections"]
    assert (tasks[conn["source"]], conn["source_port"]) == ("GPS", "gps_pose")
    assert (tasks[conn["sink"]], conn["sink_port"]) == ("PID", "pose_in")
    assert sorted(d["role"] for d in body["plan"]["dependencies"]) == ["controller", "odometry"]


def test_instantiate_missing_required_model(nav_client):
    r = nav_client.post("/api/v1/compositions/Nav/instantiate", json={"selection": {"controller": "PID"}})
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "missing_required_model"
    assert body["data"]["slot"] == "odometry"
    assert body["request_id"]


def test_instantiate_rejects_bad_payloads(nav_client):
    r = nav_client.post("/api/v1/compositions/Nav/instantiate", json={"selection": ["GPS"]})
    assert r.status_code == 422

    r = nav_client.post("/api/v1/compositions/Nav/instantiate", json={"selection": {"controller": "GPS"}})
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_selection"


def test_specializations_listing(rig_client):
    body = rig_client.get("/api/v1/compositions/Rig/specializations").json()
    assert body["model"] == "Rig"
    assert [s["children"] for s in body["declared"]] == [{"camera": ["FrontCamera"]}, {"imu": ["FastImu"]}]
    assert body["declared"][1]["excluded"] == {"camera": ["FrontCamera"]}
    assert sorted(s["model"] for s in body["instantiated"]) == ["Rig/camera=FrontCamera", "Rig/imu=FastImu"]


def test_resolve(rig_client):
    r = rig_client.post("/api/v1/compositions/Rig/resolve", json={"selection": {"camera": "FrontCamera"}})
    assert r.status_code == 200
    assert r.json() == {
        "root": "Rig",
        "model": "Rig/camera=FrontCamera",
        "specialized": True,
        "specialized_children": {"camera": ["FrontCamera"]},
    }

    r = rig_client.post("/api/v1/compositions/Rig/resolve", json={"selection": {}})
    assert r.json()["model"] == "Rig"
    assert r.json()["specialized"] is False


def test_resolve_ambiguous(rig_client):
    selection = {"camera": "FrontCamera", "imu": "FastImu"}

    r = rig_client.post("/api/v1/compositions/Rig/resolve", json={"selection": selection})
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "ambiguous_specialization"
    assert body["data"]["candidates"] == ["camera=FrontCamera", "imu=FastImu"]

    r = rig_client.post("/api/v1/compositions/Rig/resolve", json={"selection": selection, "strict": False})
    assert r.json()["model"] == "Rig"

    r = rig_client.post(
        "/api/v1/compositions/Rig/resolve",
        json={"selection": selection, "hints": [{"imu": "FastImu"}]},
    )
    assert r.json()["model"] == "Rig/imu=FastImu"


def test_instantiate_with_config_overrides(rig_client):
    selection = {"camera": "FrontCamera", "imu": "FastImu"}

    r = rig_client.post("/api/v1/compositions/Rig/instantiate", json={"selection": selection})
    assert r.status_code == 409

    r = rig_client.post(
        "/api/v1/compositions/Rig/instantiate",
        json={"selection": selection, "config": {"strict_specialization": False}},
    )
    assert r.status_code == 200
    assert r.json()["model"] == "Rig"

    r = rig_client.post(
        "/api/v1/compositions/Rig/instantiate",
        json={"selection": selection, "specialize": False},
    )
    assert r.json()["model"] == "Rig"


CLASHING_CATALOG = {
    "components": [
        {"name": "Camera", "ports": [{"name": "frame", "direction": "output", "type": "Image"}]},
        {"name": "FrontCamera", "parent": "Camera"},
        {"name": "Imu", "ports": [{"name": "accel", "direction": "output", "type": "Vector"}]},
        {"name": "FastImu", "parent": "Imu"},
        {"name": "Logger", "ports": [{"name": "frame", "direction": "input", "type": "Image"}]},
        {"name": "Recorder", "ports": [{"name": "frame", "direction": "input", "type": "Image"}]},
    ],
    "compositions": [
        {
            "name": "Rig",
            "children": [
                {"name": "camera", "models": ["Camera"]},
                {"name": "imu", "models": ["Imu"]},
            ],
            # each customization works alone, together they disagree on the logger
            "specializations": [
                {"children": {"camera": ["FrontCamera"]}, "add": [{"name": "logger", "models": ["Logger"]}]},
                {"children": {"imu": ["FastImu"]}, "add": [{"name": "logger", "models": ["Recorder"]}]},
            ],
        }
    ],
}

MERGED = "Rig/camera=FrontCamera,imu=FastImu"


@pytest.fixture()
def clashing_client(client):
    r = client.post("/api/v1/catalog", json=CLASHING_CATALOG)
    assert r.status_code == 200
    return client


def test_failed_customization_keeps_the_model_by_default(clashing_client):
    selection = {"camera": "FrontCamera", "imu": "FastImu"}
    r = clashing_client.post("/api/v1/compositions/Rig/instantiate", json={"selection": selection})
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_overload"

    r = clashing_client.get(f"/api/v1/models/{MERGED}")
    assert r.status_code == 200
    [error] = r.json()["customization_errors"]
    assert error.startswith("Rig.specializations[1]: ")


def test_failed_customization_is_evicted_on_request(clashing_client):
    selection = {"camera": "FrontCamera", "imu": "FastImu"}
    r = clashing_client.post(
        "/api/v1/compositions/Rig/instantiate",
        json={"selection": selection, "config": {"evict_failed_specializations": True}},
    )
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_overload"

    r = clashing_client.get(f"/api/v1/models/{MERGED}")
    assert r.status_code == 404
    assert clashing_client.get("/api/v1/models/Rig/camera=FrontCamera").status_code == 200


STEREO_CATALOG = {
    "services": [{"name": "ImageProvider", "ports": [{"name": "image", "direction": "output", "type": "Frame"}]}],
    "components": [
        {
            "name": "StereoCam",
            "ports": [
                {"name": "left", "direction": "output", "type": "Frame"},
                {"name": "right", "direction": "output", "type": "Frame"},
            ],
            "provides": [
                {"service": "ImageProvider", "as": "left", "mapping": {"image": "left"}},
                {"service": "ImageProvider", "as": "right", "mapping": {"image": "right"}},
            ],
        },
        {"name": "Display", "ports": [{"name": "frame", "direction": "input", "type": "Frame"}]},
    ],
    "compositions": [
        {
            "name": "View",
            "children": [
                {"name": "camera", "models": ["ImageProvider"]},
                {"name": "display", "models": ["Display"]},
            ],
            "connections": [{"source": "camera.image", "sink": "display.frame"}],
        }
    ],
}


def test_instantiate_through_a_bound_service(client):
    assert client.post("/api/v1/catalog", json=STEREO_CATALOG).status_code == 200

    r = client.post(
        "/api/v1/compositions/View/instantiate",
        json={"selection": {"camera": {"model": "StereoCam", "service": "right"}}},
    )
    assert r.status_code == 200
    [conn] = r.json()["plan"]["connections"]
    assert conn["source_port"] == "right"

    r = client.post("/api/v1/compositions/View/instantiate", json={"selection": {"camera": "StereoCam"}})
    assert r.status_code == 409
    assert r.json()["code"] == "ambiguous_service_selection"
    assert r.json()["data"]["candidates"] == ["left", "right"]
