#!/usr/bin/env python3
"""Seed the MedShare DB with demo users, patients, records and grants."""
from __future__ import annotations

import argparse
import asyncio
import random
from datetime import timedelta

from medshare.app.domain.clock import utcnow
from medshare.app.domain.models import (
    AccessLevel,
    Appointment,
    ClinicalNote,
    LabResult,
    LabStatus,
    Prescription,
    VitalsReading,
)
from medshare.app.infra.db import build_engine, create_schema, make_session_factory
from medshare.app.services.directory import UserDirectory
from medshare.app.services.grants import GrantStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed DB with demo patients and shares")
    parser.add_argument("--patients", type=int, default=3)
    parser.add_argument("--database-url", default="sqlite:///./medshare.db")
    return parser.parse_args()


def create_demo_records(session, patient_id: str, author_id: str) -> None:
    now = utcnow()
    for offset in range(0, 28, 7):
        day = now - timedelta(days=offset, hours=random.randint(0, 8))
        session.add(
            VitalsReading(
                patient_id=patient_id,
                recorded_at=day,
                blood_pressure=f"{random.randint(110, 135)}/{random.randint(70, 88)}",
                heart_rate=random.randint(58, 92),
                temperature=round(random.uniform(36.2, 37.4), 1),
                oxygen_level=random.randint(95, 99),
            )
        )
    session.add(
        Appointment(
            patient_id=patient_id,
            scheduled_at=now - timedelta(days=3),
            appointment_type="follow_up",
            doctor_name="Dr. Rivera",
            location="Clinic A",
            status="completed",
        )
    )
    session.add(
        Prescription(
            patient_id=patient_id,
            medication="Amoxicillin",
            dosage="500mg",
            frequency="3x daily",
            duration_days=7,
            start_date=now - timedelta(days=3),
            end_date=now + timedelta(days=4),
        )
    )
    session.add(
        LabResult(
            patient_id=patient_id,
            test_name="HbA1c",
            test_type="blood",
            result_value=str(round(random.uniform(5.0, 7.5), 1)),
            unit="%",
            reference_range="4.0-5.6",
            status=random.choice(list(LabStatus)),
            date=now - timedelta(days=10),
        )
    )
    session.add(
        ClinicalNote(
            patient_id=patient_id,
            author_user_id=author_id,
            title="Follow-up plan",
            body="Review lab results at next visit.",
            noted_at=now - timedelta(days=2),
        )
    )
    session.flush()


def main() -> int:
    args = parse_args()
    engine = build_engine(args.database_url)
    create_schema(engine)
    factory = make_session_factory(engine)

    with factory() as session:
        directory = UserDirectory(session)
        owner = directory.register("owner@example.com")
        colleague = directory.register("colleague@example.com")
        patient_ids = []
        for index in range(args.patients):
            patient = directory.register_patient(owner.id, "Demo", f"Patient {index + 1}")
            create_demo_records(session, patient.id, owner.id)
            patient_ids.append(patient.id)
        owner_id, colleague_email = owner.id, colleague.email

    store = GrantStore(factory)
    for patient_id in patient_ids[:2]:
        grant = asyncio.run(
            store.create_or_replace_grant_by_email(
                patient_id,
                owner_id,
                colleague_email,
                AccessLevel.READ,
                utcnow() + timedelta(days=5),
                now=utcnow(),
            )
        )
        print(f"Shared patient {patient_id} with {colleague_email} (grant {grant.id})")

    print(f"Seeded {len(patient_ids)} patients owned by {owner_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
