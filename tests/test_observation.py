import pytest
import numpy as np
import sys
import os

# Add the src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from ekf_slam.demo import main, motion_model, run_simulation
from ekf_slam.fusion import ExtendedKalmanFilterIndirect, InnovationModel
from ekf_slam.models import LinearObservation, RangeBearingObservation, wrap_angle
from ekf_slam.state import IndexSet


def numerical_jacobian(func, x, eps=1e-6):
    x = np.asarray(x, dtype=float)
    columns = []
    for i in range(x.size):
        step = np.zeros_like(x)
        step[i] = eps
        difference = np.asarray(func(x + step)) - np.asarray(func(x - step))
        columns.append(difference / (2 * eps))
    return np.column_stack(columns)


class TestLinearObservation:
    """Test the linear observation model"""

    def test_innovation_values(self):
        """Test z, Z and the Jacobian sign"""
        P = np.diag([1.0, 2.0, 3.0])
        ekf = ExtendedKalmanFilterIndirect(3, initial_state=[1.0, 2.0, 3.0], initial_covariance=P)
        H = np.array([[1.0, 0.0], [1.0, 1.0]])
        model = LinearObservation(IndexSet([0, 2]), H=H, R=np.eye(2) * 0.5)

        innovation = model.compute_innovation(ekf, [2.0, 5.0])

        np.testing.assert_allclose(innovation.z, [1.0, 1.0])
        np.testing.assert_allclose(innovation.Z, [[1.5, 1.0], [1.0, 4.5]])
        np.testing.assert_allclose(innovation.INN_rsl, -H)
        assert innovation.ia_rsl == IndexSet([0, 2])
        assert innovation.mahalanobis_distance() > 0.0

    def test_models_implement_innovation_protocol(self):
        """Test both observation models satisfy the innovation producer protocol"""
        linear = LinearObservation(IndexSet([0]), H=[[1.0]], R=[[1.0]])
        range_bearing = RangeBearingObservation(IndexSet([0, 1, 2]), np.eye(2))

        assert isinstance(linear, InnovationModel)
        assert isinstance(range_bearing, InnovationModel)
        assert not isinstance(np.eye(2), InnovationModel)

    def test_measurement_matrix_validated(self):
        """Test H must match the observed indices"""
        with pytest.raises(ValueError):
            LinearObservation(IndexSet([0, 1]), H=np.eye(3), R=np.eye(3))

    def test_measurement_size_checked(self):
        """Test measurements of the wrong size are rejected"""
        ekf = ExtendedKalmanFilterIndirect(2, initial_covariance=np.eye(2))
        model = LinearObservation(IndexSet([0, 1]), H=np.eye(2), R=np.eye(2))
        with pytest.raises(ValueError):
            model.compute_innovation(ekf, [1.0, 2.0, 3.0])


class TestRangeBearingObservation:
    """Test the planar range/bearing sensor"""

    def test_wrap_angle(self):
        """Test angle normalization"""
        np.testing.assert_allclose(wrap_angle(3 * np.pi / 2), -np.pi / 2)
        np.testing.assert_allclose(wrap_angle(-3 * np.pi / 2), np.pi / 2)
        np.testing.assert_allclose(wrap_angle(0.3), 0.3)

    def test_predicted_measurement(self):
        """Test range and bearing of a known geometry"""
        h, _ = RangeBearingObservation.predict_measurement(
            np.array([0.0, 0.0, np.pi / 2]), np.array([3.0, 4.0]))

        np.testing.assert_allclose(h[0], 5.0)
        np.testing.assert_allclose(h[1], np.arctan2(4.0, 3.0) - np.pi / 2)

    def test_jacobian_matches_finite_differences(self):
        """Test analytic Jacobian w.r.t. pose and landmark"""
        point = np.array([1.0, -0.5, 0.4, 4.0, 2.5])

        def measure(values):
            h, _ = RangeBearingObservation.predict_measurement(values[:3], values[3:])
            return h

        _, H = RangeBearingObservation.predict_measurement(point[:3], point[3:])
        np.testing.assert_allclose(H, numerical_jacobian(measure, point), atol=1e-6)

    def test_coincident_landmark_rejected(self):
        """Test zero range has no defined bearing"""
        with pytest.raises(ValueError):
            RangeBearingObservation.predict_measurement(np.zeros(3), np.zeros(2))

    def test_innovation_columns_follow_state_order(self):
        """Test Jacobian columns are placed by state index"""
        P = np.eye(5) * 0.1
        ekf = ExtendedKalmanFilterIndirect(
            5, initial_state=[4.0, 2.5, 0.0, 1.0, -0.5], initial_covariance=P)
        sensor = RangeBearingObservation(IndexSet([2, 3, 4]), np.eye(2) * 0.01)
        landmark = IndexSet([0, 1])
        pose = np.array([0.0, 1.0, -0.5])
        h, H_local = RangeBearingObservation.predict_measurement(pose, np.array([4.0, 2.5]))

        innovation = sensor.compute_innovation(ekf, h, landmark_indices=landmark)

        assert innovation.ia_rsl == IndexSet([0, 1, 2, 3, 4])
        np.testing.assert_allclose(innovation.z, [0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(innovation.INN_rsl[:, :2], -H_local[:, 3:])
        np.testing.assert_allclose(innovation.INN_rsl[:, 2:], -H_local[:, :3])

    def test_bearing_residual_is_wrapped(self):
        """Test bearings across ±π give a small residual"""
        ekf = ExtendedKalmanFilterIndirect(
            5, initial_state=[0.0, 0.0, 0.0, -5.0, 1e-3], initial_covariance=np.eye(5) * 0.1)
        sensor = RangeBearingObservation(IndexSet([0, 1, 2]), np.eye(2) * 0.01)
        h, _ = RangeBearingObservation.predict_measurement(np.zeros(3), np.array([-5.0, 1e-3]))
        measurement = np.array([h[0], wrap_angle(h[1] + 0.01)])

        innovation = sensor.compute_innovation(ekf, measurement, landmark_indices=IndexSet([3, 4]))

        np.testing.assert_allclose(innovation.z[1], 0.01, atol=1e-9)

    def test_landmark_indices_accept_sequences(self):
        """Test plain index lists are converted like the pose indices"""
        ekf = ExtendedKalmanFilterIndirect(
            5, initial_state=[0.0, 0.0, 0.0, 3.0, 4.0], initial_covariance=np.eye(5) * 0.1)
        sensor = RangeBearingObservation([0, 1, 2], np.eye(2) * 0.01)

        from_list = sensor.compute_innovation(ekf, [5.1, 0.9], landmark_indices=[3, 4])
        from_set = sensor.compute_innovation(ekf, [5.1, 0.9], landmark_indices=IndexSet([3, 4]))

        assert from_list.ia_rsl == IndexSet([0, 1, 2, 3, 4])
        np.testing.assert_array_equal(from_list.z, from_set.z)
        np.testing.assert_array_equal(from_list.INN_rsl, from_set.INN_rsl)

    def test_landmark_indices_required(self):
        """Test innovation needs a two-state landmark block"""
        ekf = ExtendedKalmanFilterIndirect(5, initial_covariance=np.eye(5))
        sensor = RangeBearingObservation(IndexSet([0, 1, 2]), np.eye(2))
        with pytest.raises(ValueError):
            sensor.compute_innovation(ekf, [1.0, 0.0])
        with pytest.raises(ValueError):
            sensor.compute_innovation(ekf, [1.0, 0.0], landmark_indices=IndexSet([3]))

    def test_back_projection_inverts_measurement(self):
        """Test back-projected landmark reproduces the measurement"""
        pose = np.array([1.0, 2.0, 0.3])
        ekf = ExtendedKalmanFilterIndirect(3, initial_state=pose, initial_covariance=np.eye(3) * 0.01)
        sensor = RangeBearingObservation(ekf.platform_indices, np.diag([0.01, 0.001]))
        measurement = np.array([4.0, 0.7])

        projection = sensor.back_project(ekf, measurement)
        h, _ = RangeBearingObservation.predict_measurement(pose, projection.mean)

        np.testing.assert_allclose(h, measurement, atol=1e-12)
        assert projection.ia_rs == ekf.platform_indices
        assert not projection.partially_observable

    def test_back_projection_jacobians(self):
        """Test G_rs and G_y against finite differences"""
        pose = np.array([1.0, 2.0, 0.3])
        measurement = np.array([4.0, 0.7])
        ekf = ExtendedKalmanFilterIndirect(3, initial_state=pose, initial_covariance=np.eye(3))
        sensor = RangeBearingObservation(ekf.platform_indices, np.eye(2))

        def landmark(p, y):
            return np.array([p[0] + y[0] * np.cos(p[2] + y[1]), p[1] + y[0] * np.sin(p[2] + y[1])])

        projection = sensor.back_project(ekf, measurement)

        np.testing.assert_allclose(
            projection.G_rs, numerical_jacobian(lambda p: landmark(p, measurement), pose), atol=1e-6)
        np.testing.assert_allclose(
            projection.G_y, numerical_jacobian(lambda y: landmark(pose, y), measurement), atol=1e-6)

    def test_landmark_initialization_from_sensor(self):
        """Test a sensor back-projection grows a consistent filter"""
        ekf = ExtendedKalmanFilterIndirect(
            3, initial_state=[0.0, 0.0, 0.1], initial_covariance=np.diag([0.01, 0.01, 0.001]))
        sensor = RangeBearingObservation(ekf.platform_indices, np.diag([0.01, 0.001]))

        landmark_id = ekf.add_landmark(sensor.back_project(ekf, [5.0, 0.2]))
        innovation = sensor.compute_innovation(
            ekf, [5.05, 0.21], landmark_indices=ekf.landmarks[landmark_id])
        ekf.correct(None, innovation)

        asymmetry, min_eigenvalue = ekf.check_consistency()
        assert ekf.size == 5
        assert asymmetry < 1e-9
        assert min_eigenvalue > -1e-8


class TestDemo:
    """Test the planar SLAM demo scenario"""

    def test_motion_model_jacobians(self):
        """Test unicycle Jacobians against finite differences"""
        pose = np.array([1.0, -2.0, 0.7])
        control = np.array([1.5, 0.2])
        dt = 0.1

        _, F_v, F_u = motion_model(pose, control, dt)

        np.testing.assert_allclose(
            F_v, numerical_jacobian(lambda p: motion_model(p, control, dt)[0], pose), atol=1e-6)
        np.testing.assert_allclose(
            F_u, numerical_jacobian(lambda u: motion_model(pose, u, dt)[0], control), atol=1e-6)

    def test_sequential_simulation(self):
        """Test the filter maps landmarks and tracks the pose"""
        summary = run_simulation(steps=150, landmark_count=8, seed=3)

        assert summary['landmarks_mapped'] > 0
        assert summary['state_size'] == 3 + 2 * summary['landmarks_mapped']
        assert summary['corrections'] > 0
        assert np.isfinite(summary['pose_error'])
        assert summary['pose_error'] < 5.0
        assert summary['asymmetry'] < 1e-9
        assert summary['min_eigenvalue'] > -1e-8

    def test_stacked_simulation(self):
        """Test the batched mode runs and keeps P symmetric"""
        summary = run_simulation(steps=60, landmark_count=8, stacked=True, seed=4)

        assert summary['landmarks_mapped'] > 0
        assert np.isfinite(summary['pose_error'])
        assert summary['asymmetry'] < 1e-9

    def test_main(self, capsys):
        """Test command line entry point"""
        assert main(['--steps', '20', '--landmarks', '6']) == 0

        captured = capsys.readouterr()
        assert 'Planar EKF-SLAM' in captured.out
        assert 'Landmarks mapped' in captured.out


if __name__ == "__main__":
    pytest.main([__file__])
