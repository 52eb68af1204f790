"""
Predefined attribute catalog.

seed_catalog() upserts these definitions by name. Shared names (firstName,
phone, email, ...) list every entity kind that carries them.
"""

from __future__ import annotations

from .types import AttributeCategory as C
from .types import AttributeDef, DataType as T

PEOPLE = ("STUDENT", "STAFF", "PARENT")


def _attr(
    name: str,
    display_name: str,
    data_type: T,
    category: C,
    entity_types: tuple[str, ...],
    is_required: bool = False,
) -> AttributeDef:
    return AttributeDef(
        name=name,
        display_name=display_name,
        data_type=data_type,
        category=category,
        entity_types=entity_types,
        is_required=is_required,
    )


ATTRIBUTE_CATALOG: tuple[AttributeDef, ...] = (
    # Students (and shared personal/contact fields)
    _attr("firstName", "First Name", T.STRING, C.PERSONAL, PEOPLE, is_required=True),
    _attr("lastName", "Last Name", T.STRING, C.PERSONAL, PEOPLE, is_required=True),
    _attr("email", "Email", T.EMAIL, C.CONTACT, PEOPLE, is_required=True),
    _attr("phone", "Phone", T.PHONE, C.CONTACT, PEOPLE),
    _attr("phoneCountryCode", "Phone Country Code", T.STRING, C.CONTACT, PEOPLE),
    _attr("address", "Address", T.TEXT, C.CONTACT, PEOPLE),
    _attr("city", "City", T.STRING, C.CONTACT, PEOPLE),
    _attr("country", "Country", T.STRING, C.CONTACT, PEOPLE),
    _attr("dateOfBirth", "Date of Birth", T.DATE, C.PERSONAL, PEOPLE),
    _attr("gender", "Gender", T.STRING, C.PERSONAL, PEOPLE),
    _attr("nationality", "Nationality", T.STRING, C.PERSONAL, ("STUDENT", "STAFF")),
    _attr("studentId", "Student ID", T.STRING, C.ACADEMIC, ("STUDENT",), is_required=True),
    _attr("program", "Program", T.STRING, C.ACADEMIC, ("STUDENT",)),
    _attr("major", "Major", T.STRING, C.ACADEMIC, ("STUDENT",)),
    _attr("minor", "Minor", T.STRING, C.ACADEMIC, ("STUDENT",)),
    _attr("year", "Year", T.STRING, C.ACADEMIC, ("STUDENT",)),
    _attr("gpa", "GPA", T.NUMBER, C.ACADEMIC, ("STUDENT",)),
    _attr("advisor", "Advisor", T.STRING, C.ACADEMIC, ("STUDENT",)),
    _attr("emergencyContact", "Emergency Contact", T.STRING, C.CONTACT, ("STUDENT",)),
    _attr("emergencyPhone", "Emergency Phone", T.PHONE, C.CONTACT, ("STUDENT",)),
    _attr("enrollmentDate", "Enrollment Date", T.DATE, C.ACADEMIC, ("STUDENT",)),
    _attr("enrollmentStatus", "Enrollment Status", T.STRING, C.ACADEMIC, ("STUDENT",)),
    # Staff
    _attr("department", "Department", T.STRING, C.EMPLOYMENT, ("STAFF", "COURSE")),
    _attr("position", "Position", T.STRING, C.EMPLOYMENT, ("STAFF",)),
    _attr("office", "Office", T.STRING, C.FACILITY, ("STAFF",)),
    _attr("officeHours", "Office Hours", T.STRING, C.SCHEDULE, ("STAFF",)),
    _attr("specialization", "Specialization", T.STRING, C.ACADEMIC, ("STAFF",)),
    _attr("hireDate", "Hire Date", T.DATE, C.EMPLOYMENT, ("STAFF",)),
    # Courses
    _attr("courseCode", "Course Code", T.STRING, C.ACADEMIC, ("COURSE",), is_required=True),
    _attr("credits", "Credits", T.NUMBER, C.ACADEMIC, ("COURSE",)),
    _attr("courseType", "Course Type", T.STRING, C.ACADEMIC, ("COURSE",)),
    _attr("capacity", "Capacity", T.NUMBER, C.ACADEMIC, ("COURSE",)),
    _attr("room", "Room", T.STRING, C.FACILITY, ("COURSE",)),
    _attr("schedule", "Schedule", T.TEXT, C.SCHEDULE, ("COURSE",)),
    _attr("semester", "Semester", T.STRING, C.ACADEMIC, ("COURSE",)),
    _attr("courseContent", "Course Content", T.TEXT, C.ACADEMIC, ("COURSE",)),
    _attr("hasLecture", "Has Lecture", T.BOOLEAN, C.ACADEMIC, ("COURSE",)),
    _attr("hasTutorial", "Has Tutorial", T.BOOLEAN, C.ACADEMIC, ("COURSE",)),
    _attr("hasLab", "Has Lab", T.BOOLEAN, C.ACADEMIC, ("COURSE",)),
    # Departments
    _attr("head", "Department Head", T.STRING, C.EMPLOYMENT, ("DEPARTMENT",)),
    _attr("building", "Building", T.STRING, C.FACILITY, ("DEPARTMENT", "ROOM")),
    _attr("establishedYear", "Established Year", T.NUMBER, C.SYSTEM, ("DEPARTMENT",)),
    _attr("website", "Website", T.URL, C.CONTACT, ("DEPARTMENT",)),
    # Buildings and rooms
    _attr("floors", "Number of Floors", T.NUMBER, C.FACILITY, ("BUILDING",)),
    _attr("floor", "Floor", T.NUMBER, C.FACILITY, ("ROOM",)),
    _attr("roomType", "Room Type", T.STRING, C.FACILITY, ("ROOM",)),
    _attr("equipment", "Equipment", T.TEXT, C.FACILITY, ("ROOM",)),
    # Events
    _attr("eventDate", "Event Date", T.DATE, C.SCHEDULE, ("EVENT",)),
    _attr("eventTime", "Event Time", T.STRING, C.SCHEDULE, ("EVENT",)),
    _attr("eventLocation", "Event Location", T.STRING, C.FACILITY, ("EVENT",)),
    _attr("eventType", "Event Type", T.STRING, C.SYSTEM, ("EVENT",)),
    # Announcements
    _attr("priority", "Priority", T.STRING, C.SYSTEM, ("ANNOUNCEMENT",)),
    _attr("targetAudience", "Target Audience", T.STRING, C.SYSTEM, ("ANNOUNCEMENT",)),
    _attr("expiryDate", "Expiry Date", T.DATE, C.SCHEDULE, ("ANNOUNCEMENT",)),
    # Course content, assessments and assignments
    _attr(
        "dueDate", "Due Date", T.DATETIME, C.SCHEDULE,
        ("COURSE_CONTENT", "ASSIGNMENT", "ASSESSMENT"),
    ),
    _attr(
        "maxScore", "Maximum Score", T.NUMBER, C.ACADEMIC,
        ("COURSE_CONTENT", "ASSIGNMENT", "ASSESSMENT"),
    ),
    _attr("weight", "Weight", T.NUMBER, C.ACADEMIC, ("COURSE_CONTENT", "ASSESSMENT")),
    _attr("instructions", "Instructions", T.TEXT, C.ACADEMIC, ("COURSE_CONTENT", "ASSIGNMENT")),
    _attr("assessmentType", "Assessment Type", T.STRING, C.ACADEMIC, ("ASSESSMENT",)),
    # Parents
    _attr("relationship", "Relationship", T.STRING, C.PERSONAL, ("PARENT",)),
    _attr("occupation", "Occupation", T.STRING, C.EMPLOYMENT, ("PARENT",)),
)
