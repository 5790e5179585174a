from cmpkit.core.plan import Plan


def test_nav_yields_exactly_one_remapped_connection(nav):
    plan = Plan()
    root = nav.composition.instantiate(plan, {"odometry": nav.gps, "controller": nav.pid})

    gps = plan.child_of(root, "odometry")
    pid = plan.child_of(root, "controller")
    assert gps.model is nav.gps
    assert pid.model is nav.pid

    assert [(c.source, c.source_port, c.sink, c.sink_port) for c in plan.connections] == [
        (gps.id, "gps_pose", pid.id, "pose_in"),
    ]


def test_nav_through_a_gps_submodel(nav):
    gps_nav = nav.composition.new_submodel("GPSNav")
    gps_nav.overload("odometry", nav.gps)

    plan = Plan()
    root = gps_nav.instantiate(plan, {"controller": nav.pid})

    gps = plan.child_of(root, "odometry")
    pid = plan.child_of(root, "controller")
    assert [(c.source, c.source_port, c.sink, c.sink_port) for c in plan.connections] == [
        (gps.id, "gps_pose", pid.id, "pose_in"),
    ]


def test_nav_with_a_specialized_odometry(registry, nav):
    rtk = nav.gps.new_submodel("RTKGps")
    spec = nav.composition.specialize({"odometry": [nav.gps]})

    plan = Plan()
    root = nav.composition.instantiate(plan, {"odometry": rtk, "controller": nav.pid})

    assert root.model is spec.composition_model
    assert root.model.name == "Nav/odometry=GPS"
    gps = plan.child_of(root, "odometry")
    pid = plan.child_of(root, "controller")
    assert gps.model is rtk
    assert [(c.source, c.source_port, c.sink, c.sink_port) for c in plan.connections] == [
        (gps.id, "gps_pose", pid.id, "pose_in"),
    ]
