"""
Train Configuration Store
=========================

In-memory lookup of trains, device inputs and bindings, loaded from a
JSON document:

    {
      "devices": [
        {"config_id": 1, "inputs": [{"id": 10, "pin": 2, "input_type": "analog",
                                     "calibration": {"min_value": 12, "max_value": 1010}}],
         "outputs": [{"id": 30, "pin": 13, "name": "AWS"}]}
      ],
      "trains": [
        {"id": 1, "name": "Class 142", "identifier": "RVM_PBO_Class142",
         "elements": [...],
         "sequences": [...],
         "lever_bindings": [...],
         "button_bindings": [...],
         "output_bindings": [...]}
      ]
    }

The dispatch engines and train detection only use the lookup methods.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

from .models import (
    ButtonBinding, Input, LeverBinding, LeverConfig, Output, OutputBinding, Sequence, Train,
)

logger = logging.getLogger(__name__)


class TrainStore:
    """Thread-safe, read-mostly configuration lookup."""

    def __init__(self):
        self._lock = threading.Lock()
        self._trains: Dict[Any, Train] = {}
        self._inputs: Dict[int, List[Input]] = {}
        self._lever_bindings: Dict[Any, List[LeverBinding]] = {}
        self._button_bindings: Dict[Any, List[ButtonBinding]] = {}
        self._outputs: Dict[int, List[Output]] = {}
        self._output_bindings: Dict[Any, List[OutputBinding]] = {}

    @classmethod
    def load(cls, path: Union[str, Path]) -> "TrainStore":
        """Load a store from a JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        store = cls.from_dict(data)
        logger.info(f"Loaded {len(store.trains())} trains from {path}")
        return store

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainStore":
        store = cls()
        for device in data.get("devices", []):
            store.add_inputs(device["config_id"], [Input.from_dict(i) for i in device.get("inputs", [])])
            store.add_outputs(device["config_id"], [Output.from_dict(o) for o in device.get("outputs", [])])

        for entry in data.get("trains", []):
            sequences = {s["id"]: Sequence.from_dict(s) for s in entry.get("sequences", [])}
            store.add_train(
                Train.from_dict(entry),
                lever_bindings=[LeverBinding.from_dict(b) for b in entry.get("lever_bindings", [])],
                button_bindings=[ButtonBinding.from_dict(b, sequences) for b in entry.get("button_bindings", [])],
                output_bindings=[OutputBinding.from_dict(b) for b in entry.get("output_bindings", [])],
            )
        return store

    def add_train(
        self,
        train: Train,
        lever_bindings: Optional[List[LeverBinding]] = None,
        button_bindings: Optional[List[ButtonBinding]] = None,
        output_bindings: Optional[List[OutputBinding]] = None,
    ):
        with self._lock:
            self._trains[train.id] = train
            self._lever_bindings[train.id] = list(lever_bindings or [])
            self._button_bindings[train.id] = list(button_bindings or [])
            self._output_bindings[train.id] = list(output_bindings or [])

    def add_inputs(self, config_id: int, inputs: List[Input]):
        with self._lock:
            self._inputs[config_id] = list(inputs)

    def trains(self) -> List[Train]:
        with self._lock:
            return list(self._trains.values())

    def get_train(self, train_id: Any) -> Optional[Train]:
        with self._lock:
            return self._trains.get(train_id)

    def find_trains_by_identifier(self, identifier: str) -> List[Train]:
        """Trains whose stored identifier is a prefix of the detected one."""
        with self._lock:
            return [t for t in self._trains.values() if t.identifier and identifier.startswith(t.identifier)]

    def list_inputs(self, config_id: int) -> List[Input]:
        """Inputs defined for a device configuration."""
        with self._lock:
            return list(self._inputs.get(config_id, []))

    def list_lever_bindings(self, train_id: Any) -> List[Tuple[LeverConfig, LeverBinding]]:
        """Enabled lever bindings for a train, paired with their lever config."""
        with self._lock:
            train = self._trains.get(train_id)
            if train is None:
                return []
            levers = {lc.id: lc for lc in train.lever_configs()}
            result = []
            for binding in self._lever_bindings.get(train_id, []):
                if not binding.enabled:
                    continue
                lever = levers.get(binding.lever_config_id)
                if lever is None:
                    logger.warning(f"Lever binding {binding.id} references unknown lever config "
                                   f"{binding.lever_config_id}")
                    continue
                result.append((lever, binding))
            return result

    def list_button_bindings(self, train_id: Any) -> List[ButtonBinding]:
        """Enabled button bindings for a train."""
        with self._lock:
            return [b for b in self._button_bindings.get(train_id, []) if b.enabled]

    def add_outputs(self, config_id: int, outputs: List[Output]):
        with self._lock:
            self._outputs[config_id] = list(outputs)

    def find_output(self, output_id: int) -> Optional[Tuple[int, Output]]:
        """(config_id, output) for an output id, or None."""
        with self._lock:
            for config_id, outputs in self._outputs.items():
                for output in outputs:
                    if output.id == output_id:
                        return config_id, output
            return None

    def list_output_bindings(self, train_id: Any) -> List[OutputBinding]:
        """Enabled output bindings for a train."""
        with self._lock:
            return [b for b in self._output_bindings.get(train_id, []) if b.enabled]
