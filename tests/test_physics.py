"""Tests for the Physical phase helpers: forces, integration and bounds."""

import pytest

from entityverse.entity import Entity
from entityverse.physics import apply_bounds, compute_forces, essence_similarity, integrate, pairs_within
from entityverse.schemas import PhysicsConfig
from entityverse.scoring import TextOverlapScorer


def overlap(a: Entity, b: Entity) -> float:
    return essence_similarity(a, b, TextOverlapScorer())


def test_similar_entities_inside_radius_attract():
    ada = Entity(id="ada", x=0.0, y=0.0, essence="bread baker")
    bo = Entity(id="bo", x=50.0, y=0.0, essence="bread baker")

    forces = compute_forces([ada, bo], PhysicsConfig(), overlap)

    assert forces["ada"] == pytest.approx((0.05, 0.0))
    assert forces["bo"] == pytest.approx((-0.05, 0.0))


def test_attraction_scales_with_similarity():
    ada = Entity(id="ada", x=0.0, y=0.0, essence="bread baker")
    bo = Entity(id="bo", x=0.0, y=80.0, essence="bread miller")

    forces = compute_forces([ada, bo], PhysicsConfig(force_constant=0.3), overlap)

    # one shared word out of three
    assert forces["ada"] == pytest.approx((0.0, 0.1))


@pytest.mark.parametrize(
    "essence_a, essence_b",
    [
        ("bread baker", "iron smith"),
        ("bread baker", None),
        (None, None),
    ],
)
def test_dissimilar_or_essenceless_entities_do_not_attract(essence_a, essence_b):
    ada = Entity(id="ada", x=0.0, y=0.0, essence=essence_a)
    bo = Entity(id="bo", x=50.0, y=0.0, essence=essence_b)

    forces = compute_forces([ada, bo], PhysicsConfig(), overlap)

    assert forces == {"ada": (0.0, 0.0), "bo": (0.0, 0.0)}


@pytest.mark.parametrize("gap", [0.0, 10.0, 20.0, 161.0, 500.0])
def test_no_force_inside_personal_space_or_beyond_radius(gap):
    ada = Entity(id="ada", x=100.0, y=100.0, essence="baker")
    bo = Entity(id="bo", x=100.0 + gap, y=100.0, essence="baker")

    forces = compute_forces([ada, bo], PhysicsConfig(), overlap)

    assert forces["ada"] == (0.0, 0.0)
    assert forces["bo"] == (0.0, 0.0)


def test_pairs_within_uses_stable_order():
    entities = [
        Entity(id="ada", x=0.0, y=0.0),
        Entity(id="bo", x=3.0, y=4.0),
        Entity(id="cy", x=300.0, y=0.0),
    ]
    pairs = pairs_within(entities, 10.0)
    assert [(a.id, b.id, d) for a, b, d in pairs] == [("ada", "bo", 5.0)]


def test_integrate_applies_force_damping_and_speed_cap():
    config = PhysicsConfig(damping=1.0, bounds="none", max_speed=50.0)
    ada = Entity(id="ada", x=10.0, y=10.0, vx=2.0)

    integrate(ada, (1.0, 0.0), 1.0, config)
    assert (ada.vx, ada.x) == pytest.approx((3.0, 13.0))

    ada.vx, ada.vy = 60.0, 80.0
    integrate(ada, (0.0, 0.0), 1.0, config)
    assert (ada.vx, ada.vy) == pytest.approx((30.0, 40.0))

    damped = Entity(id="bo", vx=10.0)
    integrate(damped, (0.0, 0.0), 1.0, PhysicsConfig(damping=0.5, bounds="none"))
    assert damped.vx == pytest.approx(5.0)


def test_bounce_reflects_position_and_velocity():
    config = PhysicsConfig(width=100.0, height=100.0, bounds="bounce")
    ada = Entity(id="ada", x=110.0, y=-4.0, vx=5.0, vy=-2.0)

    apply_bounds(ada, config)

    assert (ada.x, ada.y) == pytest.approx((90.0, 4.0))
    assert (ada.vx, ada.vy) == pytest.approx((-5.0, 2.0))


def test_clamp_pins_to_wall_and_stops():
    config = PhysicsConfig(width=100.0, height=100.0, bounds="clamp")
    ada = Entity(id="ada", x=110.0, y=50.0, vx=5.0, vy=1.0)

    apply_bounds(ada, config)

    assert (ada.x, ada.y) == (100.0, 50.0)
    assert (ada.vx, ada.vy) == (0.0, 1.0)


def test_unbounded_world_leaves_entities_alone():
    ada = Entity(id="ada", x=-30.0, y=900.0, vx=-1.0)
    apply_bounds(ada, PhysicsConfig(bounds="none"))
    assert (ada.x, ada.y, ada.vx) == (-30.0, 900.0, -1.0)
