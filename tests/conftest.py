import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from evoting.candidates import CandidateRegistry
from evoting.crud import create_admin
from evoting.database.connection import ensure_indexes, get_db
from evoting.main import app
from evoting.notifications import Notifier, get_notifier
from evoting.security import create_access_token
from evoting.settings_store import SettingsStore
from evoting.voters import VoterRegistry


def bearer(admin):
    token = create_access_token({"sub": str(admin["_id"]), "email": admin["email"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["kirinyaga_evoting_test"]
    ensure_indexes(database)
    SettingsStore(database).initialize_defaults()
    yield database
    client.close()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: Notifier(api_key="")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def super_admin(db):
    return create_admin(db, "returning.officer@kirinyaga.go.ke", "Sup3r-Secret-Pass", "Returning Officer", role="super_admin")


@pytest.fixture
def admin_headers(super_admin):
    return bearer(super_admin)


@pytest.fixture
def clerk_headers(db):
    clerk = create_admin(db, "clerk@kirinyaga.go.ke", "Cl3rk-Secret-Pass", "Registration Clerk")
    return bearer(clerk)


@pytest.fixture
def make_voter(db):
    """Factory registering voters with unique national ids and emails."""
    counter = itertools.count(1)

    def _make(constituency="Mwea", ward="Mwea", **overrides):
        n = next(counter)
        data = {
            "nationalId": f"3100{n:04d}",
            "fullName": f"Voter Number {n}",
            "email": f"voter{n}@gmail.com",
            "phoneNumber": f"07120000{n:02d}",
            "constituency": constituency,
            "ward": ward,
        }
        data.update(overrides)
        return VoterRegistry(db).register(data)

    return _make


@pytest.fixture
def election(db, make_voter):
    """Mwea/Mwea voter with one eligible candidate per position, portal open."""
    candidates = CandidateRegistry(db)
    seeded = {
        "governor": candidates.add({"fullName": "Anne Wairimu", "position": "Governor", "politicalParty": "UDA"}),
        "women_rep": candidates.add(
            {"fullName": "Beatrice Njeri", "position": "Women Representative", "politicalParty": "ODM"}
        ),
        "mp": candidates.add(
            {"fullName": "Charles Muriithi", "position": "MP", "politicalParty": "Jubilee", "constituency": "Mwea"}
        ),
        "mca": candidates.add({
            "fullName": "David Kamau", "position": "MCA", "politicalParty": "UDA",
            "constituency": "Mwea", "ward": "Mwea",
        }),
        "mca_thiba": candidates.add({
            "fullName": "Esther Wanjiku", "position": "MCA", "politicalParty": "ODM",
            "constituency": "Mwea", "ward": "Thiba",
        }),
    }
    seeded["voter"] = make_voter()
    SettingsStore(db).set_portal_open(True)
    return seeded


@pytest.fixture
def full_ballot(election):
    return [
        {"position": "Governor", "candidateId": str(election["governor"]["_id"])},
        {"position": "Women Representative", "candidateId": str(election["women_rep"]["_id"])},
        {"position": "MP", "candidateId": str(election["mp"]["_id"])},
        {"position": "MCA", "candidateId": str(election["mca"]["_id"])},
    ]
