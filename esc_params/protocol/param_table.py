"""
ESC parameter table: build-time defaults, binary record layout, and XML
export/import.

The table is a packed array of fixed-size records (little-endian, as stored
in the controller's parameter flash page):

    [index:u1] [name:27 bytes, NUL-terminated] [value:f4] [default:f4] [min:f4] [max:f4]
"""

import logging
from enum import IntEnum
from typing import NamedTuple, List
import xml.etree.ElementTree as ET

import numpy as np

log = logging.getLogger(__name__)

# ── Layout constants ──────────────────────────────────────────────────
PARAM_NAME_LEN = 27                 # bytes, including the NUL terminator
PARAM_NAME_MAX = PARAM_NAME_LEN - 1  # usable characters
FLASH_WRITE_ALIGN = 4               # flash program granularity (bytes)

PARAM_DTYPE = np.dtype([
    ("index",         "u1"),
    ("name",          "S%d" % PARAM_NAME_LEN),
    ("value",         "<f4"),
    ("default_value", "<f4"),
    ("min_value",     "<f4"),
    ("max_value",     "<f4"),
])

XML_ROOT_TAG = "ESCParameters"


class ParamTableError(ValueError):
    """Raised when a parameter table or blob does not match the build layout."""


class ParamId(IntEnum):
    """
    Parameter indices. Values are the record positions in the table and
    the handle used by the bus parameter protocol.
    """
    PARAM_MOTOR_NUM_POLES = 0
    PARAM_MOTOR_CURRENT_LIMIT = 1
    PARAM_MOTOR_VOLTAGE_LIMIT = 2
    PARAM_MOTOR_RPM_MAX = 3
    PARAM_MOTOR_RS = 4
    PARAM_MOTOR_LS = 5
    PARAM_MOTOR_KV = 6
    PARAM_CONTROL_ACCEL_TORQUE_MAX = 7
    PARAM_CONTROL_LOAD_TORQUE = 8
    PARAM_CONTROL_ACCEL_GAIN = 9
    PARAM_CONTROL_ACCEL_TIME = 10
    PARAM_UAVCAN_ESCSTATUS_INTERVAL = 11
    PARAM_UAVCAN_NODE_ID = 12
    PARAM_UAVCAN_ESC_INDEX = 13
    PARAM_PWM_CONTROL_MODE = 14
    PARAM_PWM_THROTTLE_MIN = 15
    PARAM_PWM_THROTTLE_MAX = 16
    PARAM_PWM_THROTTLE_DEADBAND = 17
    PARAM_PWM_CONTROL_OFFSET = 18
    PARAM_PWM_CONTROL_CURVE = 19
    PARAM_PWM_CONTROL_MIN = 20
    PARAM_PWM_CONTROL_MAX = 21


class ParamDef(NamedTuple):
    index: int
    name: str
    value: float          # value the working table is seeded with
    default_value: float  # factory value restored by a reset
    min_value: float
    max_value: float


class ParamRecord(NamedTuple):
    """Snapshot of one table row, as returned by lookups."""
    index: int
    name: str
    value: float
    default_value: float
    min_value: float
    max_value: float


# ── Build-time default table ──────────────────────────────────────────
# Exact record order. Index, name, seed value, default, min, max.

PARAM_DEFAULTS: List[ParamDef] = [
    # Motor
    ParamDef(ParamId.PARAM_MOTOR_NUM_POLES,     "motor_num_poles",      14.0,    14.0,    4.0,    40.0),
    ParamDef(ParamId.PARAM_MOTOR_CURRENT_LIMIT, "motor_current_limit",  1.0,     10.0,    1.0,    40.0),
    ParamDef(ParamId.PARAM_MOTOR_VOLTAGE_LIMIT, "motor_voltage_limit",  2.0,     7.4,     0.5,    27.0),
    ParamDef(ParamId.PARAM_MOTOR_RPM_MAX,       "motor_rpm_max",        20000.0, 20000.0, 500.0,  40000.0),
    ParamDef(ParamId.PARAM_MOTOR_RS,            "motor_rs",             60e-3,   60e-3,   1e-3,   1000e-3),
    ParamDef(ParamId.PARAM_MOTOR_LS,            "motor_ls",             20e-6,   20e-6,   1e-6,   1000e-6),
    ParamDef(ParamId.PARAM_MOTOR_KV,            "motor_kv",             850.0,   850.0,   100.0,  5000.0),
    # Speed / torque control
    ParamDef(ParamId.PARAM_CONTROL_ACCEL_TORQUE_MAX, "control_accel_torque_max", 2.0,  2.0,  0.1,  40.0),
    ParamDef(ParamId.PARAM_CONTROL_LOAD_TORQUE,      "control_load_torque",      10.0, 10.0, 1.0,  40.0),
    ParamDef(ParamId.PARAM_CONTROL_ACCEL_GAIN,       "control_accel_gain",       0.1,  0.1,  0.0,  1.0),
    ParamDef(ParamId.PARAM_CONTROL_ACCEL_TIME,       "control_accel_time",       0.1,  0.1,  0.01, 1.0),
    # UAVCAN
    ParamDef(ParamId.PARAM_UAVCAN_ESCSTATUS_INTERVAL, "uavcan_escstatus_interval", 100e-3, 100e-3, 1e-3, 1000e-3),
    ParamDef(ParamId.PARAM_UAVCAN_NODE_ID,            "uavcan_node_id",            1.0,    0.0,    0.0,  125.0),
    ParamDef(ParamId.PARAM_UAVCAN_ESC_INDEX,          "uavcan_esc_index",          0.0,    0.0,    0.0,  15.0),
    # PWM input
    ParamDef(ParamId.PARAM_PWM_CONTROL_MODE,      "pwm_control_mode",      0.0,    0.0,    0.0,      1.0),
    ParamDef(ParamId.PARAM_PWM_THROTTLE_MIN,      "pwm_throttle_min",      1100.0, 1100.0, 1000.0,   2000.0),
    ParamDef(ParamId.PARAM_PWM_THROTTLE_MAX,      "pwm_throttle_max",      1900.0, 1900.0, 1000.0,   2000.0),
    ParamDef(ParamId.PARAM_PWM_THROTTLE_DEADBAND, "pwm_throttle_deadband", 10.0,   10.0,   0.0,      1000.0),
    ParamDef(ParamId.PARAM_PWM_CONTROL_OFFSET,    "pwm_control_offset",    0.0,    0.0,    -1.0,     1.0),
    ParamDef(ParamId.PARAM_PWM_CONTROL_CURVE,     "pwm_control_curve",     1.0,    1.0,    0.5,      2.0),
    ParamDef(ParamId.PARAM_PWM_CONTROL_MIN,       "pwm_control_min",       0.0,    0.0,    -40000.0, 40000.0),
    ParamDef(ParamId.PARAM_PWM_CONTROL_MAX,       "pwm_control_max",       0.0,    0.0,    -40000.0, 40000.0),
]

NUM_PARAMS = len(PARAM_DEFAULTS)
PARAM_TABLE_SIZE = PARAM_DTYPE.itemsize * NUM_PARAMS

# Same check the firmware makes at compile time: the flash write routine
# programs whole words.
assert PARAM_TABLE_SIZE % FLASH_WRITE_ALIGN == 0, \
    "Size of the parameter table must be a multiple of %d" % FLASH_WRITE_ALIGN


# ── Descriptions (CLI listing and XML export) ─────────────────────────

PARAM_DESCRIPTIONS = {
    "motor_num_poles": "Number of motor poles; converts mechanical to electrical speed",
    "motor_current_limit": "Motor current limit (A); caps the current setpoint and its slew rate",
    "motor_voltage_limit": "Commanded voltage limit (V); may exceed the motor's nominal voltage",
    "motor_rpm_max": "Rated maximum RPM; limits the top of the PWM setpoint range",
    "motor_rs": "Phase resistance (ohm); estimated on start-up",
    "motor_ls": "Phase inductance (H); estimated on start-up",
    "motor_kv": "Motor KV (RPM/V); a 20% error is tolerated",
    "control_accel_torque_max": "Torque available for acceleration above load torque (A)",
    "control_load_torque": "Target torque at full throttle (A)",
    "control_accel_gain": "Speed controller acceleration gain",
    "control_accel_time": "Rise time of the speed controller torque output (s)",
    "uavcan_escstatus_interval": "ESC status broadcast interval (s)",
    "uavcan_node_id": "UAVCAN node ID of this ESC (0 = dynamic allocation)",
    "uavcan_esc_index": "Index of this ESC in throttle command messages",
    "pwm_control_mode": "0=PWM drives torque controller, 1=PWM drives speed controller",
    "pwm_throttle_min": "Pulse width at zero throttle (us)",
    "pwm_throttle_max": "Pulse width at full throttle (us)",
    "pwm_throttle_deadband": "Pulse width deadband around zero throttle (us)",
    "pwm_control_offset": "Offset applied to the normalised throttle input",
    "pwm_control_curve": "0=Sqrt, 1=Linear, 2=Quadratic throttle curve",
    "pwm_control_min": "Controller setpoint at minimum throttle",
    "pwm_control_max": "Controller setpoint at maximum throttle",
}


# ── Table construction / validation ───────────────────────────────────

def _check_name(name: str) -> bytes:
    raw = name.encode("ascii")
    if not 0 < len(raw) <= PARAM_NAME_MAX:
        raise ParamTableError(f"Parameter name {name!r} must be 1-{PARAM_NAME_MAX} characters")
    return raw


def _check_defs(defs: List[ParamDef]) -> None:
    """Reject a default table that could not have been built into firmware."""
    seen = set()
    for i, d in enumerate(defs):
        if d.index != i:
            raise ParamTableError(f"Parameter {d.name!r} has index {d.index}, expected {i}")
        _check_name(d.name)
        if d.name in seen:
            raise ParamTableError(f"Duplicate parameter name {d.name!r}")
        seen.add(d.name)
        if not d.min_value <= d.max_value:
            raise ParamTableError(f"Parameter {d.name!r} has empty bounds")
        for label in ("value", "default_value"):
            v = getattr(d, label)
            if not d.min_value <= v <= d.max_value:
                raise ParamTableError(f"Parameter {d.name!r} {label} {v} out of bounds")


def build_param_table(defs: List[ParamDef] = PARAM_DEFAULTS) -> np.ndarray:
    """Create a fresh working table seeded from a default table."""
    _check_defs(defs)
    table = np.zeros(len(defs), dtype=PARAM_DTYPE)
    for i, d in enumerate(defs):
        table[i] = (int(d.index), _check_name(d.name), d.value,
                    d.default_value, d.min_value, d.max_value)
    return table


_TEMPLATE = build_param_table()


def record_from_row(row) -> ParamRecord:
    return ParamRecord(
        index=int(row["index"]),
        name=row["name"].decode("ascii"),
        value=float(row["value"]),
        default_value=float(row["default_value"]),
        min_value=float(row["min_value"]),
        max_value=float(row["max_value"]),
    )


def validate_params(table: np.ndarray) -> None:
    """
    Check a table against the build layout.

    Indices must be dense, names and bounds must match the compiled-in
    table record for record, and every value must sit within its bounds.
    Raises ParamTableError on the first mismatch.
    """
    if table.dtype != PARAM_DTYPE or table.shape != (NUM_PARAMS,):
        raise ParamTableError(f"Expected {NUM_PARAMS} records of {PARAM_DTYPE.itemsize} bytes")

    for i in range(NUM_PARAMS):
        row, ref = table[i], _TEMPLATE[i]
        if row["index"] != i:
            raise ParamTableError(f"Record {i} has index {row['index']}")
        if row["name"] != ref["name"]:
            raise ParamTableError(f"Record {i} is {row['name']!r}, expected {ref['name']!r}")
        for key in ("default_value", "min_value", "max_value"):
            if row[key] != ref[key]:
                raise ParamTableError(f"Record {i} {key} differs from build table")
        if not ref["min_value"] <= row["value"] <= ref["max_value"]:
            raise ParamTableError(f"Record {i} value {row['value']} out of bounds")


# ── Binary serialization ──────────────────────────────────────────────

def serialize_params(table: np.ndarray) -> bytes:
    """Raw bytes of the table, exactly as written to parameter flash."""
    return table.astype(PARAM_DTYPE, copy=False).tobytes()


def deserialize_params(data: bytes) -> np.ndarray:
    """
    Decode a raw blob into a writable table.
    Trailing bytes (rest of the erased page) are ignored.
    """
    if len(data) < PARAM_TABLE_SIZE:
        raise ParamTableError(f"Blob is {len(data)} bytes, need {PARAM_TABLE_SIZE}")
    return np.frombuffer(data, dtype=PARAM_DTYPE, count=NUM_PARAMS).copy()


# ── XML export / import ───────────────────────────────────────────────

def params_to_xml(table: np.ndarray) -> str:
    """
    Convert a table to an XML document, one element per parameter.
    Bounds and defaults are exported as attributes for reference only.
    """
    root = ET.Element(XML_ROOT_TAG)

    for row in table:
        rec = record_from_row(row)
        elem = ET.SubElement(root, rec.name)
        elem.set("index", str(rec.index))
        elem.set("default", repr(rec.default_value))
        elem.set("min", repr(rec.min_value))
        elem.set("max", repr(rec.max_value))
        elem.text = repr(rec.value)
        desc = PARAM_DESCRIPTIONS.get(rec.name)
        if desc:
            elem.append(ET.Comment(f" {desc} "))

    ET.indent(root, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(
        root, encoding="unicode"
    )


def xml_to_params(source: str) -> dict:
    """
    Load parameter values from an XML file path or XML text.

    Returns { name: value } for every known parameter present in the
    document. Bounds are not checked here; values are applied through the
    store's validated setters.
    """
    if source.lstrip().startswith("<"):
        root = ET.fromstring(source)
    else:
        root = ET.parse(source).getroot()

    if root.tag != XML_ROOT_TAG:
        raise ValueError(f"Unknown root tag: {root.tag}")

    values = {}
    for d in PARAM_DEFAULTS:
        elem = root.find(d.name)
        if elem is not None and elem.text is not None and elem.text.strip():
            values[d.name] = float(elem.text.strip())

    unknown = {e.tag for e in root if isinstance(e.tag, str)} - {d.name for d in PARAM_DEFAULTS}
    for name in sorted(unknown):
        log.warning("Ignoring unknown parameter %r in XML", name)

    return values
