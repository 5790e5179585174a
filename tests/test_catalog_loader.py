import pytest

from cmpkit.core.catalog import load_catalog
from cmpkit.core.errors import CatalogError, DeclarationError, UnknownModel
from cmpkit.core.models import BoundService
from cmpkit.core.plan import Plan, Requirement, SlotReference


RIG_CATALOG = {
    "components": [
        {"name": "Camera", "ports": [{"name": "frame", "direction": "output", "type": "Image"}]},
        {"name": "FrontCamera", "parent": "Camera"},
        {"name": "Fusion", "ports": [{"name": "frame", "direction": "input", "type": "Image"}]},
        {"name": "Logger", "ports": [{"name": "frame", "direction": "input", "type": "Image"}]},
    ],
    "compositions": [
        {
            "name": "Rig",
            "children": [
                {"name": "camera", "models": ["Camera"]},
                {"name": "fusion", "models": ["Fusion"], "options": {"roles": ["sink"]}},
            ],
            "connections": [{"source": "camera.frame", "sink": "fusion.frame"}],
            "specializations": [
                {
                    "children": {"camera": ["FrontCamera"]},
                    "add": [{"name": "logger", "models": ["Logger"], "optional": True}],
                    "connections": [{"source": "camera.frame", "sink": "logger.frame"}],
                }
            ],
        }
    ],
}


def test_load_and_instantiate(nav_catalog):
    catalog = load_catalog(nav_catalog)
    nav = catalog.composition("Nav")

    plan = Plan()
    root = nav.instantiate(plan, catalog.selection({"odometry": "GPS", "controller": "PID"}))

    gps = plan.child_of(root, "odometry")
    pid = plan.child_of(root, "controller")
    assert [(c.source, c.source_port, c.sink, c.sink_port) for c in plan.connections] == [
        (gps.id, "gps_pose", pid.id, "pose_in"),
    ]


def test_lookups(nav_catalog):
    catalog = load_catalog(nav_catalog)

    assert catalog.model("GPS").kind == "component"
    assert [m.name for m in catalog.list_models("service")] == ["PositionProvider", "Controller"]
    with pytest.raises(UnknownModel):
        catalog.model("Lidar")
    with pytest.raises(CatalogError):
        catalog.composition("GPS")


def test_specializations_with_customizations():
    catalog = load_catalog(RIG_CATALOG)
    rig = catalog.composition("Rig")

    specialized = catalog.model("Rig/camera=FrontCamera")
    assert specialized.supermodel is rig
    assert specialized.child("logger").is_optional
    assert ("camera", "logger") in specialized.connections()
    assert rig.find_child("logger") is None
    assert rig.child("fusion").dependency_options["roles"] == ["sink"]

    plan = Plan()
    root = rig.instantiate(plan, catalog.selection({"camera": "FrontCamera"}))
    assert root.model is specialized
    assert len(plan.connections) == 2


def test_selection_forms(nav_catalog):
    catalog = load_catalog(nav_catalog)
    gps = catalog.model("GPS")

    selection = catalog.selection(
        {
            "odometry": {"model": "GPS", "service": "PositionProvider"},
            "controller": "@odometry",
            "Controller": "PID",
            "nav.odometry": {"model": "GPS", "arguments": {"rate": 10}},
        }
    )

    bound = selection["odometry"]
    assert isinstance(bound, BoundService)
    assert bound.component is gps
    assert selection["controller"] == SlotReference("odometry")
    assert selection[catalog.model("Controller")] is catalog.model("PID")
    assert selection["nav.odometry"] == Requirement(gps, {"rate": 10}, {})


def test_invalid_selections(nav_catalog):
    catalog = load_catalog(nav_catalog)
    with pytest.raises(UnknownModel):
        catalog.selection({"odometry": {"model": "GPS", "service": "Controller"}})
    with pytest.raises(CatalogError):
        catalog.selection({"odometry": {"arguments": {}}})
    with pytest.raises(CatalogError):
        catalog.selection({"odometry": 3})


def test_services_may_be_declared_in_any_order():
    catalog = load_catalog(
        {
            "services": [
                {"name": "Localization", "provides": [{"service": "PositionProvider"}]},
                {"name": "PositionProvider", "ports": [{"name": "pose", "direction": "output", "type": "Pose"}]},
            ]
        }
    )
    localization = catalog.model("Localization")
    assert localization.fulfills(catalog.model("PositionProvider"))
    assert localization.port_names() == ["pose"]


def test_circular_services_are_rejected():
    with pytest.raises(CatalogError):
        load_catalog(
            {
                "services": [
                    {"name": "A", "provides": [{"service": "B"}]},
                    {"name": "B", "provides": [{"service": "A"}]},
                ]
            }
        )


def test_models_must_be_declared_before_use():
    with pytest.raises(UnknownModel):
        load_catalog({"components": [{"name": "FrontCamera", "parent": "Camera"}]})


def test_component_parent_inherits_ports_and_services(nav_catalog):
    nav_catalog["components"].append({"name": "RTKGps", "parent": "GPS"})
    catalog = load_catalog(nav_catalog)

    rtk = catalog.model("RTKGps")
    assert rtk.supermodel is catalog.model("GPS")
    assert rtk.port_names() == ["gps_pose"]
    assert rtk.port_mappings_for(catalog.model("PositionProvider")) == {"pose": "gps_pose"}


def test_main_child_from_the_document(nav_catalog):
    nav_catalog["compositions"][0]["children"][1]["main"] = True
    catalog = load_catalog(nav_catalog)
    nav = catalog.composition("Nav")
    assert nav.main_child is nav.child("controller")

    plan = Plan()
    root = nav.instantiate(plan, catalog.selection({"odometry": "GPS", "controller": "PID"}))
    options = {d.role: d.options for d in plan.dependencies if d.parent == root.id}
    assert options["controller"]["success"] == ["success"]
    assert options["odometry"]["success"] == []

    nav_catalog["compositions"][0]["children"][0]["main"] = True
    with pytest.raises(DeclarationError):
        load_catalog(nav_catalog)
