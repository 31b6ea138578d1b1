"""
Typed parameter groups handed to the motor, speed-control, PWM input and
UAVCAN subsystems.

Readers are pure: they take the working table, never modify it, and never
fail. Unit conversions follow the controller firmware exactly.
"""

import math
from enum import IntEnum
from dataclasses import dataclass

import numpy as np

from .param_table import ParamId

CONTROL_BANDWIDTH_HZ = 50.0


class ControlCurve(IntEnum):
    """PWM throttle-to-setpoint curve."""
    SQRT = 0
    LINEAR = 1
    QUADRATIC = 2


@dataclass(frozen=True)
class MotorParams:
    num_poles: int = 0
    max_current_a: float = 0.0
    max_voltage_v: float = 0.0
    max_speed_rad_per_s: float = 0.0
    rs_r: float = 0.0               # phase resistance (ohm)
    ls_h: float = 0.0               # phase inductance (H)
    phi_v_s_per_rad: float = 0.0    # back-EMF constant


@dataclass(frozen=True)
class ControlParams:
    bandwidth_hz: float = CONTROL_BANDWIDTH_HZ
    max_accel_torque_a: float = 0.0
    load_torque_a: float = 0.0
    accel_gain: float = 0.0
    accel_time_s: float = 0.0


@dataclass(frozen=True)
class PWMParams:
    use_speed_controller: bool = False
    throttle_pulse_min_us: int = 0
    throttle_pulse_max_us: int = 0
    throttle_deadband_us: int = 0
    control_offset: float = 0.0
    control_min: float = 0.0
    control_max: float = 0.0
    control_curve: ControlCurve = ControlCurve.LINEAR


@dataclass(frozen=True)
class UAVCANParams:
    node_id: int = 0
    esc_index: int = 0
    esc_status_interval_s: float = 0.0


def _rad_per_s_from_rpm(rpm: float, num_poles: int) -> float:
    return rpm * 60.0 / (2.0 * math.pi * float(num_poles >> 1))


def _value(table: np.ndarray, pid: ParamId) -> float:
    return float(table[pid]["value"])


def _u16(value: float) -> int:
    # C-style truncating cast to uint16_t
    return int(value) & 0xFFFF


def decode_control_curve(raw: float) -> ControlCurve:
    """Decode the stored curve code; unknown codes fall back to LINEAR."""
    code = int(raw) & 0xFF
    if code == ControlCurve.SQRT:
        return ControlCurve.SQRT
    elif code == ControlCurve.LINEAR:
        return ControlCurve.LINEAR
    elif code == ControlCurve.QUADRATIC:
        return ControlCurve.QUADRATIC
    return ControlCurve.LINEAR


def read_motor_params(table: np.ndarray) -> MotorParams:
    num_poles = int(_value(table, ParamId.PARAM_MOTOR_NUM_POLES))
    return MotorParams(
        num_poles=num_poles,
        max_current_a=_value(table, ParamId.PARAM_MOTOR_CURRENT_LIMIT),
        max_voltage_v=_value(table, ParamId.PARAM_MOTOR_VOLTAGE_LIMIT),
        max_speed_rad_per_s=_rad_per_s_from_rpm(
            _value(table, ParamId.PARAM_MOTOR_RPM_MAX), num_poles),
        rs_r=_value(table, ParamId.PARAM_MOTOR_RS),
        ls_h=_value(table, ParamId.PARAM_MOTOR_LS),
        phi_v_s_per_rad=_rad_per_s_from_rpm(
            1.0 / _value(table, ParamId.PARAM_MOTOR_KV), num_poles),
    )


def read_control_params(table: np.ndarray) -> ControlParams:
    return ControlParams(
        bandwidth_hz=CONTROL_BANDWIDTH_HZ,
        max_accel_torque_a=_value(table, ParamId.PARAM_CONTROL_ACCEL_TORQUE_MAX),
        load_torque_a=_value(table, ParamId.PARAM_CONTROL_LOAD_TORQUE),
        accel_gain=_value(table, ParamId.PARAM_CONTROL_ACCEL_GAIN),
        accel_time_s=_value(table, ParamId.PARAM_CONTROL_ACCEL_TIME),
    )


def read_pwm_params(table: np.ndarray) -> PWMParams:
    return PWMParams(
        use_speed_controller=_value(table, ParamId.PARAM_PWM_CONTROL_MODE) > 0.0,
        throttle_pulse_min_us=_u16(_value(table, ParamId.PARAM_PWM_THROTTLE_MIN)),
        throttle_pulse_max_us=_u16(_value(table, ParamId.PARAM_PWM_THROTTLE_MAX)),
        throttle_deadband_us=_u16(_value(table, ParamId.PARAM_PWM_THROTTLE_DEADBAND)),
        control_offset=_value(table, ParamId.PARAM_PWM_CONTROL_OFFSET),
        control_min=_value(table, ParamId.PARAM_PWM_CONTROL_MIN),
        control_max=_value(table, ParamId.PARAM_PWM_CONTROL_MAX),
        control_curve=decode_control_curve(_value(table, ParamId.PARAM_PWM_CONTROL_CURVE)),
    )


def read_uavcan_params(table: np.ndarray) -> UAVCANParams:
    return UAVCANParams(
        node_id=int(_value(table, ParamId.PARAM_UAVCAN_NODE_ID)),
        esc_index=int(_value(table, ParamId.PARAM_UAVCAN_ESC_INDEX)),
        esc_status_interval_s=_value(table, ParamId.PARAM_UAVCAN_ESCSTATUS_INTERVAL),
    )
