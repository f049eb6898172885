"""
Personnel collaborator.

The planning engine never owns employee or workplace data; it asks a
``PersonnelDirectory`` whether an assignment is acceptable.  The default
implementation reads the personnel reference tables.  Another
implementation (e.g. an HR service client) can be installed with::

    app.extensions["personnel_directory"] = MyDirectory()

Every check returns ``(ok, reason)``; ``reason`` is empty when ok.
"""

from abc import ABC, abstractmethod

from flask import current_app

from prodplan.models import db
from prodplan.models.personnel import Employee, Workplace


class PersonnelDirectory(ABC):
    """Validation contract used by the assignment resolver."""

    @abstractmethod
    def check_assignee(self, employee_ref: str, position_ref: str | None) -> tuple[bool, str]:
        """May *employee_ref* work in *position_ref* (None = any position)?"""

    @abstractmethod
    def check_workplace(self, workplace_ref: str, position_ref: str | None) -> tuple[bool, str]:
        """Does *workplace_ref* exist and accept *position_ref*?"""


class SqlPersonnelDirectory(PersonnelDirectory):
    """Directory backed by the positions/employees/workplaces tables."""

    def check_assignee(self, employee_ref, position_ref):
        employee = db.session.get(Employee, employee_ref)
        if employee is None:
            return False, f"Employee {employee_ref} not found"
        if employee.is_fired:
            return False, f"Employee {employee_ref} is no longer employed"
        if position_ref and position_ref not in employee.position_ids:
            return False, f"Employee {employee_ref} does not hold position '{position_ref}'"
        return True, ""

    def check_workplace(self, workplace_ref, position_ref):
        workplace = db.session.get(Workplace, workplace_ref)
        if workplace is None:
            return False, f"Workplace {workplace_ref} not found"
        if position_ref and position_ref not in workplace.position_ids:
            return False, f"Workplace {workplace_ref} does not accept position '{position_ref}'"
        return True, ""


def get_personnel_directory() -> PersonnelDirectory:
    directory = current_app.extensions.get("personnel_directory")
    if directory is None:
        directory = SqlPersonnelDirectory()
        current_app.extensions["personnel_directory"] = directory
    return directory
