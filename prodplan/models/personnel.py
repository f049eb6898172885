"""
Shop-floor Production Planning Engine
Personnel reference tables (read-only for the planning engine).

Models:
    - Position:           skill / job title (e.g. "print", "cutter")
    - Employee:           individual worker; fired employees cannot be assigned
    - EmployeePosition:   which positions an employee holds (N:M)
    - Workplace:          machine or station on the shop floor
    - WorkplacePosition:  which positions a workplace accepts (N:M)

These tables are owned by the personnel service. The engine only queries
them through ``SqlPersonnelDirectory``; ``seed_reference_data`` loads the
factory's standard positions and workplaces for a fresh database.
"""

from datetime import datetime, timezone

from prodplan.models import db


employee_positions = db.Table(
    "employee_positions",
    db.Column("employee_id", db.String(64),
              db.ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True),
    db.Column("position_id", db.String(64),
              db.ForeignKey("positions.id", ondelete="RESTRICT"), primary_key=True),
)

workplace_positions = db.Table(
    "workplace_positions",
    db.Column("workplace_id", db.String(64),
              db.ForeignKey("workplaces.id", ondelete="CASCADE"), primary_key=True),
    db.Column("position_id", db.String(64),
              db.ForeignKey("positions.id", ondelete="RESTRICT"), primary_key=True),
)


class Position(db.Model):
    __tablename__ = "positions"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {"id": self.id, "name": self.name, "description": self.description}

    def __repr__(self):
        return f"<Position {self.id}>"


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.String(64), primary_key=True)
    last_name = db.Column(db.String(100), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    patronymic = db.Column(db.String(100), default="")
    is_fired = db.Column(db.Boolean, nullable=False, default=False)
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    positions = db.relationship("Position", secondary=employee_positions, lazy="selectin")

    @property
    def position_ids(self):
        return sorted(p.id for p in self.positions)

    def to_dict(self):
        return {
            "id": self.id,
            "last_name": self.last_name,
            "first_name": self.first_name,
            "patronymic": self.patronymic,
            "is_fired": self.is_fired,
            "position_ids": self.position_ids,
        }

    def __repr__(self):
        return f"<Employee {self.id}: {self.last_name}>"


class Workplace(db.Model):
    __tablename__ = "workplaces"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    has_machine = db.Column(db.Boolean, nullable=False, default=False)
    max_concurrent_workers = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    positions = db.relationship("Position", secondary=workplace_positions, lazy="selectin")

    @property
    def position_ids(self):
        return sorted(p.id for p in self.positions)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "has_machine": self.has_machine,
            "max_concurrent_workers": self.max_concurrent_workers,
            "position_ids": self.position_ids,
        }

    def __repr__(self):
        return f"<Workplace {self.id}: {self.name}>"


# ── Seed data ────────────────────────────────────────────────────────────────

DEFAULT_POSITIONS = [
    ("bob_cutter", "Bobbin cutter"),
    ("print", "Printer"),
    ("cut_sheet", "Sheet cutter"),
    ("bag_collector", "Bag assembler"),
    ("cutter", "Cutter"),
    ("bottom_gluer", "Bottom gluer"),
    ("handle_gluer", "Handle gluer"),
    ("die_cutter", "Die-cut operator"),
    ("assembler", "Assembler"),
    ("rope_operator", "Rope operator"),
    ("handle_operator", "Handle operator"),
    ("muffin_operator", "Muffin operator"),
    ("single_point_gluer", "Single-point gluer"),
    ("manager", "Manager"),
    ("warehouse_head", "Warehouse head"),
    ("tech_leader", "Technical leader"),
]

# (workplace_id, name, accepted position)
DEFAULT_WORKPLACES = [
    ("w_bobiner", "Bobbin cutter", "bob_cutter"),
    ("w_flexoprint", "Flexo print", "print"),
    ("w_sheet_old", "Sheet cutter 1 (old)", "cut_sheet"),
    ("w_sheet_new", "Sheet cutter 2 (new)", "cut_sheet"),
    ("w_auto_p_assembly", "Automatic P-assembly", "bag_collector"),
    ("w_auto_p_pipe", "Automatic P-assembly (pipe)", "bag_collector"),
    ("w_auto_v1", "Automatic V-assembly 1", "bag_collector"),
    ("w_auto_v2", "Automatic V-assembly 2 (window)", "bag_collector"),
    ("w_cutting", "Cutting", "cutter"),
    ("w_bottom_glue_cold", "Cold bottom gluing", "bottom_gluer"),
    ("w_bottom_glue_hot", "Hot bottom gluing", "bottom_gluer"),
    ("w_handle_glue_auto", "Automatic handle gluing", "handle_gluer"),
    ("w_handle_glue_semi", "Semi-automatic handle gluing", "handle_gluer"),
    ("w_die_cut_a1", "Die cut A1", "die_cutter"),
    ("w_die_cut_a2", "Die cut A2", "die_cutter"),
    ("w_tape_glue", "Tape gluing", "assembler"),
    ("w_two_sheet", "Two-sheet assembly", "assembler"),
    ("w_pipe_assembly", "Pipe assembly", "assembler"),
    ("w_bottom_card", "Bottom + card assembly", "assembler"),
    ("w_bottom_glue_manual", "Manual bottom gluing", "assembler"),
    ("w_card_laying", "Card laying", "assembler"),
    ("w_rope_maker", "Rope making", "rope_operator"),
    ("w_rope_reel", "Rope reeling", "rope_operator"),
    ("w_handle_maker", "Handle machine", "handle_operator"),
    ("w_press", "Press", "cutter"),
    ("w_tart_maker", "Tartlet machine", "muffin_operator"),
    ("w_muffin_bord", "Muffin machine (rim)", "muffin_operator"),
    ("w_muffin_no_bord", "Muffin machine (no rim)", "muffin_operator"),
    ("w_tulip_maker", "Tulip machine", "muffin_operator"),
    ("w_single_point", "Single-point gluing", "single_point_gluer"),
]


def seed_reference_data():
    """Insert the standard positions and workplaces that are missing.

    Idempotent. Returns the number of new rows; caller commits.
    """
    created = 0
    positions = {}
    for pid, name in DEFAULT_POSITIONS:
        pos = db.session.get(Position, pid)
        if pos is None:
            pos = Position(id=pid, name=name)
            db.session.add(pos)
            created += 1
        positions[pid] = pos

    for wid, name, position_id in DEFAULT_WORKPLACES:
        if db.session.get(Workplace, wid) is None:
            db.session.add(Workplace(id=wid, name=name, positions=[positions[position_id]]))
            created += 1

    db.session.flush()
    return created
