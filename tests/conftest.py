import os
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from cmpkit.api.main import app
from cmpkit.api.workspace import get_workspace
from cmpkit.core.models import ModelRegistry
from cmpkit.core.observability.metrics import reset_metrics


@pytest.fixture(scope="session", autouse=True)
def _force_test_env():
    # Make engine behave deterministically in tests
    os.environ.setdefault("CMPKIT_STRICT_SPECIALIZATION", "1")
    os.environ.setdefault("CMPKIT_LOG_LEVEL", "WARNING")


@pytest.fixture()
def registry():
    return ModelRegistry()


@pytest.fixture()
def nav(registry):
    """
    Nav: odometry (PositionProvider) -> controller (Controller).
    GPS provides PositionProvider with pose -> gps_pose, PID provides Controller as-is.
    """
    position = registry.service("PositionProvider")
    position.output_port("pose", "Pose")
    controller = registry.service("Controller")
    controller.input_port("pose_in", "Pose")

    gps = registry.component("GPS")
    gps.output_port("gps_pose", "Pose")
    gps.provides(position)

    pid = registry.component("PID")
    pid.input_port("pose_in", "Pose")
    pid.provides(controller)

    composition = registry.composition("Nav")
    composition.add(position, as_="odometry")
    composition.add(controller, as_="controller")
    composition.connect(
        composition.child("odometry").port("pose"),
        composition.child("controller").port("pose_in"),
    )
    return SimpleNamespace(
        registry=registry,
        position=position,
        controller=controller,
        gps=gps,
        pid=pid,
        composition=composition,
    )


@pytest.fixture()
def sensors(registry):
    """
    A composition with two component slots, each refinable by two unrelated submodels.
    """
    camera = registry.component("Camera")
    camera.output_port("frame", "Image")
    front = camera.new_submodel("FrontCamera")
    rear = camera.new_submodel("RearCamera")

    imu = registry.component("Imu")
    imu.output_port("accel", "Vector")
    fast_imu = imu.new_submodel("FastImu")
    slow_imu = imu.new_submodel("SlowImu")

    fusion = registry.component("Fusion")
    fusion.input_port("frame", "Image")
    fusion.input_port("accel", "Vector")

    rig = registry.composition("Rig")
    rig.add(camera, as_="camera")
    rig.add(imu, as_="imu")
    rig.add(fusion, as_="fusion")
    rig.connect(rig.child("camera").port("frame"), rig.child("fusion").port("frame"))
    rig.connect(rig.child("imu").port("accel"), rig.child("fusion").port("accel"))
    return SimpleNamespace(
        registry=registry,
        camera=camera,
        front=front,
        rear=rear,
        imu=imu,
        fast_imu=fast_imu,
        slow_imu=slow_imu,
        fusion=fusion,
        rig=rig,
    )


NAV_CATALOG = {
    "services": [
        {"name": "PositionProvider", "ports": [{"name": "pose", "direction": "output", "type": "Pose"}]},
        {"name": "Controller", "ports": [{"name": "pose_in", "direction": "input", "type": "Pose"}]},
    ],
    "components": [
        {
            "name": "GPS",
            "ports": [{"name": "gps_pose", "direction": "output", "type": "Pose"}],
            "provides": [{"service": "PositionProvider"}],
        },
        {
            "name": "PID",
            "ports": [{"name": "pose_in", "direction": "input", "type": "Pose"}],
            "provides": [{"service": "Controller"}],
        },
    ],
    "compositions": [
        {
            "name": "Nav",
            "children": [
                {"name": "odometry", "models": ["PositionProvider"]},
                {"name": "controller", "models": ["Controller"]},
            ],
            "connections": [{"source": "odometry.pose", "sink": "controller.pose_in"}],
        }
    ],
}


@pytest.fixture()
def nav_catalog():
    import copy

    return copy.deepcopy(NAV_CATALOG)


@pytest.fixture()
def client():
    get_workspace().clear()
    reset_metrics()
    yield TestClient(app)
    get_workspace().clear()
