"""
Train Control Modules
=====================

Train configuration, identification and the dispatch engines:
    - TrainDetection: which configured train is being driven
    - LeverController: lever positions -> simulator values, haptic profiles
    - ButtonController: button edges -> simulator writes, sequences, keystrokes
    - OutputController: simulator values -> hardware outputs (LEDs)
"""

from .models import (
    ButtonBinding,
    ButtonMode,
    Calibration,
    Element,
    ElementType,
    HardwareType,
    Input,
    LeverBinding,
    LeverConfig,
    LeverType,
    Notch,
    NotchType,
    Output,
    OutputBinding,
    OutputOperator,
    Sequence,
    SequenceCommand,
    Train,
)

from .store import TrainStore

from .lever_mapper import (
    MappingError,
    MappingErrorReason,
    find_notch,
    map_detent,
    map_input,
)

from .profile_builder import (
    ProfileBuildError,
    ProfileBuildErrorReason,
    build_profile,
)

from .detection import (
    DetectionConfig,
    DetectionState,
    DetectionStatus,
    TrainDetection,
)

from .lever_controller import LeverController
from .button_controller import ButtonController
from .output_controller import OutputController, evaluate_condition

__all__ = [
    'ButtonBinding',
    'ButtonMode',
    'Calibration',
    'Element',
    'ElementType',
    'HardwareType',
    'Input',
    'LeverBinding',
    'LeverConfig',
    'LeverType',
    'Notch',
    'NotchType',
    'Output',
    'OutputBinding',
    'OutputOperator',
    'Sequence',
    'SequenceCommand',
    'Train',
    'TrainStore',
    'MappingError',
    'MappingErrorReason',
    'find_notch',
    'map_detent',
    'map_input',
    'ProfileBuildError',
    'ProfileBuildErrorReason',
    'build_profile',
    'DetectionConfig',
    'DetectionState',
    'DetectionStatus',
    'TrainDetection',
    'LeverController',
    'ButtonController',
    'OutputController',
    'evaluate_condition',
]
