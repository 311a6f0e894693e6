import math

import numpy as np

from videoimufusion.control.pose import (
    compose,
    identity_pose,
    inverse,
    make_pose,
    pose_from_rotation,
    transform_point,
)
from videoimufusion.math3d.quaternion import axis_angle_to_q


def _yaw(deg: float) -> np.ndarray:
    return axis_angle_to_q(np.array([0.0, 1.0, 0.0]), math.radians(deg))


def test_compose_with_inverse_is_identity():
    t = make_pose([0.5, -1.0, 2.0], _yaw(30.0))
    out = compose(t, inverse(t))
    ident = identity_pose()
    np.testing.assert_allclose(out.position, ident.position, atol=1e-12)
    np.testing.assert_allclose(abs(np.dot(out.quaternion, ident.quaternion)), 1.0, atol=1e-12)


def test_compose_applies_right_operand_first():
    rotate = pose_from_rotation(_yaw(90.0))
    shift = make_pose([0.0, 0.0, 1.0], [1.0, 0.0, 0.0, 0.0])
    p = transform_point(compose(rotate, shift), np.zeros(3))
    # shift to +z, then yaw +90 about y maps +z to +x
    np.testing.assert_allclose(p, [1.0, 0.0, 0.0], atol=1e-12)


def test_inverse_maps_point_back():
    t = make_pose([1.0, 2.0, 3.0], _yaw(-45.0))
    p = np.array([0.2, 0.4, -0.6])
    np.testing.assert_allclose(transform_point(inverse(t), transform_point(t, p)), p, atol=1e-12)
