from sqlalchemy import MetaData
import enum

metadata = MetaData()


# ============================================================================
# ENUMS
# ============================================================================

class SourceKind(str, enum.Enum):
    """Kinds of source the normalizer understands"""
    CSV = "csv"
    HEALTH_CONNECT = "health_connect"


class RecordKind(str, enum.Enum):
    """Health Connect record kinds, valued by their destination measurement name"""
    HEART_RATE = "HeartRate"
    STEPS = "Steps"
    SLEEP = "Sleep"
    WEIGHT = "Weight"
    TOTAL_CALORIES = "TotalCalories"
    ACTIVE_CALORIES = "ActiveCalories"
    BASAL_METABOLIC_RATE = "BasalMetabolicRate"
    BODY_FAT = "BodyFat"
    EXERCISE_SESSION = "ExerciseSession"


class SleepStage(int, enum.Enum):
    """Health Connect sleep stage type codes"""
    UNKNOWN = 0
    AWAKE = 1
    SLEEPING = 2
    OUT_OF_BED = 3
    LIGHT = 4
    DEEP = 5
    REM = 6


class RunStatus(str, enum.Enum):
    """Import run outcome"""
    SUCCESS = "success"
    PARTIAL = "partial_success"
    NO_NEW_DATA = "no_new_data"
