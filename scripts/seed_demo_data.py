import asyncio
import json
import os
import sys
from datetime import date, datetime, time, timedelta, timezone

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.db import SessionLocal, init_models
from app.core.paging import PageParams
from app.modules.directory.repository import DirectoryRepository
from app.modules.schedules.repository import ScheduleRepository, DoctorScheduleRepository
from app.modules.schedules.schemas import ScheduleCreate
from app.modules.schedules.service import ScheduleService

DAYS_AHEAD = 7

async def seed_directory(db, data: dict) -> list:
    """
    Creates doctors and patients that are not there yet. Returns all doctors from the file.
    """
    directory = DirectoryRepository(db)
    doctors = []
    for doc in data.get("doctors", []):
        existing = await directory.doctor_by_email(doc["email"])
        if existing:
            print(f"  - Doctor '{doc['email']}' already exists. Skipping.")
            doctors.append(existing)
            continue
        print(f"  - Creating doctor: {doc['name']} (fee {doc.get('appointment_fee', 0)})")
        doctors.append(await directory.create_doctor(
            name=doc["name"],
            email=doc["email"],
            designation=doc.get("designation"),
            appointment_fee=doc.get("appointment_fee", 0),
        ))
    for pat in data.get("patients", []):
        if await directory.patient_by_email(pat["email"]):
            print(f"  - Patient '{pat['email']}' already exists. Skipping.")
            continue
        print(f"  - Creating patient: {pat['name']}")
        await directory.create_patient(name=pat["name"], email=pat["email"], contact_number=pat.get("contact_number"))
    await db.commit()
    return doctors

async def main():
    print("Starting demo data seed...")
    await init_models()

    json_file_path = os.path.join(os.path.dirname(__file__), 'demo_directory.json')
    with open(json_file_path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    async with SessionLocal() as db:
        doctors = [(d.id, d.name) for d in await seed_directory(db, data)]

        start = date.today() + timedelta(days=1)
        window = ScheduleCreate(
            start_date=start, end_date=start + timedelta(days=DAYS_AHEAD - 1),
            start_time=time(9, 0), end_time=time(13, 0),
        )
        created = await ScheduleService(db).create_schedules(window)
        print(f"Generated {len(created)} new schedule slots")

        schedules = ScheduleRepository(db)
        assignments = DoctorScheduleRepository(db)
        window_from = datetime.combine(window.start_date, window.start_time, tzinfo=timezone.utc)
        window_until = datetime.combine(window.end_date, window.end_time, tzinfo=timezone.utc)
        for doctor_id, doctor_name in doctors:
            free, _ = await schedules.list_unassigned(
                doctor_id, start_from=window_from, end_until=window_until, params=PageParams(limit=1000),
            )
            count = await assignments.add_many(doctor_id, [s.id for s in free])
            print(f"  - Assigned {count} slots to {doctor_name}")
        await db.commit()
        print("Demo data seed complete!")

if __name__ == "__main__":
    asyncio.run(main())
