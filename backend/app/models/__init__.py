from app.models.academic_setup import (  # noqa: F401
    AcademicSetup,
    AcademicSetupBuilding,
    AcademicSetupFaculty,
    AcademicSetupRoom,
    AcademicSetupSubject,
    SubjectFacultyAssignment,
)
from app.models.room import Room, RoomAssignmentRule, RoomType  # noqa: F401
from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus  # noqa: F401
from app.models.subject import Subject  # noqa: F401
from app.models.time_slot import TimeSlot  # noqa: F401
