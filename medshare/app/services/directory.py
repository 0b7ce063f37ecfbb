"""User and patient-ownership lookups backed by the CRUD tables."""
from sqlmodel import Session, select

from ..domain.errors import InvalidArgument, NotFound
from ..domain.models import Patient, UserAccount


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, email: str) -> UserAccount:
        address = normalize_email(email)
        if not address:
            raise InvalidArgument("email is required")
        user = self.session.exec(
            select(UserAccount).where(UserAccount.email == address)
        ).first()
        if user is None:
            user = UserAccount(email=address)
            self.session.add(user)
            self.session.flush()
            self.session.refresh(user)
        return user

    def register_patient(self, owner_user_id: str, first_name: str, last_name: str) -> Patient:
        if self.session.get(UserAccount, owner_user_id) is None:
            raise InvalidArgument(f"unknown owner {owner_user_id}")
        patient = Patient(
            owner_user_id=owner_user_id,
            first_name=first_name,
            last_name=last_name,
        )
        self.session.add(patient)
        self.session.flush()
        self.session.refresh(patient)
        return patient

    def resolve_user_id_by_email(self, email: str) -> str:
        user_id = self.session.exec(
            select(UserAccount.id).where(UserAccount.email == normalize_email(email))
        ).first()
        if user_id is None:
            raise NotFound(f"no user with email {email}")
        return user_id

    def user_exists(self, user_id: str) -> bool:
        return self.session.get(UserAccount, user_id) is not None

    def find_owner(self, patient_id: str) -> str | None:
        patient = self.session.get(Patient, patient_id)
        return patient.owner_user_id if patient else None

    def get_owner(self, patient_id: str) -> str:
        owner = self.find_owner(patient_id)
        if owner is None:
            raise NotFound(f"patient {patient_id} not found")
        return owner
