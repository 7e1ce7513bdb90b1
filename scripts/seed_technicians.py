"""
Seed a starter technician roster, one or more per trade.
Technicians whose email already exists are skipped.

Usage:
    python scripts/seed_technicians.py
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fixit.config import settings
from fixit.db import Base, SessionLocal, engine
from fixit.models.models import Technician
from fixit.schemas.dispatch import TechnicianCreate
from fixit.services.technicians import create_technician


ROSTER = [
    {"name": "Maria Lopez", "email": "mlopez@facilities.udel.edu", "trade": "plumbing",
     "assigned_buildings": ["Gore Hall", "Smith Hall", "Memorial Hall"]},
    {"name": "James Carter", "email": "jcarter@facilities.udel.edu", "trade": "electrical",
     "assigned_buildings": ["Evans Hall", "DuPont Hall", "Spencer Lab"]},
    {"name": "Priya Natarajan", "email": "pnatarajan@facilities.udel.edu", "trade": "hvac",
     "assigned_buildings": ["Morris Library", "Perkins Student Center", "Trabant University Center"]},
    {"name": "Tom Brennan", "email": "tbrennan@facilities.udel.edu", "trade": "structural",
     "assigned_buildings": ["Purnell Hall", "Kirkbride Hall"]},
    {"name": "Aisha Bello", "email": "abello@facilities.udel.edu", "trade": "custodial",
     "assigned_buildings": ["Gore Hall", "Willard Hall", "Mitchell Hall"]},
    {"name": "Kevin Park", "email": "kpark@facilities.udel.edu", "trade": "landscaping",
     "assigned_buildings": ["STAR Campus", "Carpenter Sports Building"]},
    {"name": "Dana Reyes", "email": "dreyes@facilities.udel.edu", "trade": "safety_hazard",
     "assigned_buildings": ["ISE Lab", "Colburn Lab", "Brown Lab", "Sharp Lab"]},
    {"name": "Luis Ortega", "email": "lortega@facilities.udel.edu", "trade": "plumbing",
     "assigned_buildings": ["Christiana Towers", "Campus Center"]},
]


def seed_technicians():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = 0
        for entry in ROSTER:
            exists = db.query(Technician).filter(Technician.email == entry["email"]).first()
            if exists:
                print(f"[SKIP] {entry['name']} ({entry['email']}) already exists")
                continue
            create_technician(db, TechnicianCreate(**entry))
            created += 1
            print(f"[CREATE] {entry['name']} - {entry['trade']}")
        print(f"\nSeeded {created} technician(s); roster has {db.query(Technician).count()} total.")
    except Exception as e:
        db.rollback()
        print(f"Error seeding technicians: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_technicians()
