from app.models.alert import AlertKind, BackupAlert  # noqa: F401
from app.models.backup import Backup, BackupStatus, BackupType  # noqa: F401
from app.models.dr_plan import (  # noqa: F401
    DisasterRecoveryPlan,
    DRPriority,
    DRTestResult,
    RecoveryStep,
)
from app.models.restore_point import RestorePoint  # noqa: F401
from app.models.schedule import (  # noqa: F401
    BackupSchedule,
    ScheduleBackupType,
    ScheduleFrequency,
)
