"""
ESC parameter store: validated get/set by index or name, typed group
readers, and persistence of the whole table to parameter flash.

The store owns one working copy of the table. It does no locking; callers
that share it between a request handler and a control loop must serialize
access themselves, and must not touch the table while write_params() runs.
"""

import logging
from enum import Enum

import numpy as np

from .protocol.param_table import (
    NUM_PARAMS, PARAM_NAME_MAX, PARAM_TABLE_SIZE,
    ParamRecord, ParamTableError,
    build_param_table, record_from_row, validate_params,
    serialize_params, deserialize_params,
)
from .protocol.param_groups import (
    MotorParams, ControlParams, PWMParams, UAVCANParams,
    read_motor_params, read_control_params, read_pwm_params, read_uavcan_params,
)
from .storage.flash import FlashStorage, FLASH_PAGE_SIZE, is_chunk_empty

log = logging.getLogger(__name__)

PARAM_FLASH_REGION = 0x0000         # parameter page offset in flash
PARAM_FLASH_ERASE_SIZE = FLASH_PAGE_SIZE


class ParamStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_VALUE = "invalid_value"


def _find_param_index_by_name(name: str, table: np.ndarray) -> int:
    """Index of the record named `name`, or NUM_PARAMS if there is none."""
    try:
        raw = name.encode("ascii")
    except (UnicodeEncodeError, AttributeError):
        return NUM_PARAMS
    if not 0 < len(raw) <= PARAM_NAME_MAX:
        return NUM_PARAMS

    for i in range(len(table)):
        if table[i]["name"] == raw:
            return i
    return NUM_PARAMS


class ParameterStore:
    """
    Working parameter table plus the flash it is persisted to.

    `storage` is only needed for write_params(); `table` seeds the working
    copy (it is copied and validated) and defaults to the build table.
    """

    def __init__(self, storage: FlashStorage | None = None,
                 table: np.ndarray | None = None,
                 region: int = PARAM_FLASH_REGION,
                 erase_size: int = PARAM_FLASH_ERASE_SIZE):
        if table is None:
            self._params = build_param_table()
        else:
            validate_params(table)
            self._params = table.copy()
        self.storage = storage
        self.region = region
        self.erase_size = erase_size
        if erase_size < PARAM_TABLE_SIZE:
            raise ValueError(f"Erase size {erase_size} cannot hold {PARAM_TABLE_SIZE} byte table")

    @classmethod
    def from_storage(cls, storage: FlashStorage,
                     region: int = PARAM_FLASH_REGION,
                     erase_size: int = PARAM_FLASH_ERASE_SIZE) -> "ParameterStore":
        """
        Load the table last persisted at `region`. Erased or unreadable
        flash falls back to the build defaults.
        """
        blob = storage.read(region, PARAM_TABLE_SIZE)
        if is_chunk_empty(blob):
            log.info("Parameter flash at 0x%X is erased, using defaults", region)
            return cls(storage, region=region, erase_size=erase_size)

        try:
            table = deserialize_params(blob)
            validate_params(table)
        except ParamTableError as e:
            log.warning("Stored parameters rejected (%s), using defaults", e)
            return cls(storage, region=region, erase_size=erase_size)

        log.info("Loaded %d parameters from flash at 0x%X", NUM_PARAMS, region)
        return cls(storage, table=table, region=region, erase_size=erase_size)

    @property
    def num_params(self) -> int:
        return NUM_PARAMS

    def table(self) -> np.ndarray:
        """Copy of the working table."""
        return self._params.copy()

    def records(self) -> list[ParamRecord]:
        return [record_from_row(row) for row in self._params]

    # ── Lookup ────────────────────────────────────────────────────────

    def get_param_by_index(self, index: int) -> ParamRecord | None:
        if not 0 <= index < NUM_PARAMS:
            return None
        return record_from_row(self._params[index])

    def get_param_by_name(self, name: str) -> ParamRecord | None:
        return self.get_param_by_index(_find_param_index_by_name(name, self._params))

    # ── Mutation ──────────────────────────────────────────────────────

    def set_param_value_by_index(self, index: int, value: float) -> ParamStatus:
        if not 0 <= index < NUM_PARAMS:
            return ParamStatus.NOT_FOUND

        row = self._params[index]
        v = np.float32(value)
        if row["min_value"] <= v <= row["max_value"]:
            self._params["value"][index] = v
            return ParamStatus.OK

        log.debug("Rejected %s=%r (bounds %g..%g)", row["name"].decode("ascii"),
                  value, row["min_value"], row["max_value"])
        return ParamStatus.INVALID_VALUE

    def set_param_value_by_name(self, name: str, value: float) -> ParamStatus:
        return self.set_param_value_by_index(
            _find_param_index_by_name(name, self._params), value)

    def reset_param_by_index(self, index: int) -> ParamStatus:
        """Restore one parameter to its factory default."""
        if not 0 <= index < NUM_PARAMS:
            return ParamStatus.NOT_FOUND
        self._params["value"][index] = self._params["default_value"][index]
        return ParamStatus.OK

    def reset_params(self) -> None:
        self._params["value"] = self._params["default_value"]

    def apply_values(self, values: dict) -> list[str]:
        """
        Set several parameters by name, one at a time. Returns the names
        that were unknown or out of bounds; those keep their old values.
        """
        rejected = []
        for name, value in values.items():
            if self.set_param_value_by_name(name, value) is not ParamStatus.OK:
                rejected.append(name)
        return rejected

    # ── Group readers ─────────────────────────────────────────────────

    def read_motor_params(self) -> MotorParams:
        return read_motor_params(self._params)

    def read_control_params(self) -> ControlParams:
        return read_control_params(self._params)

    def read_pwm_params(self) -> PWMParams:
        return read_pwm_params(self._params)

    def read_uavcan_params(self) -> UAVCANParams:
        return read_uavcan_params(self._params)

    # ── Persistence ───────────────────────────────────────────────────

    def write_params(self) -> None:
        """
        Persist the working table:
          1. protect(False)
          2. erase the whole parameter page
          3. write the raw table
          4. protect(True) -- always, even if 2 or 3 raised

        Not atomic: an interruption between erase and write leaves the page
        erased or partial. Storage faults propagate to the caller.
        """
        if self.storage is None:
            raise RuntimeError("ParameterStore has no storage to write to")

        data = serialize_params(self._params)
        self.storage.protect(False)
        try:
            self.storage.erase(self.region, self.erase_size)
            self.storage.write(self.region, len(data), data)
        finally:
            self.storage.protect(True)
        log.info("Wrote %d parameters (%d bytes) to flash at 0x%X",
                 NUM_PARAMS, len(data), self.region)
