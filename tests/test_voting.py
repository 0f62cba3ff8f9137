from datetime import datetime, timezone

import pytest
from pymongo.errors import AutoReconnect, OperationFailure

from evoting.audit import AuditLog
from evoting.ballots import BallotStore
from evoting.candidates import CandidateRegistry
from evoting.errors import AlreadyVoted, StoreUnavailable
from evoting.main import app
from evoting.notifications import get_notifier
from evoting.results import ResultsAggregator
from evoting.settings_store import SettingsStore
from evoting.voters import VoterRegistry
from evoting.voting import VotingService

SUBMIT = "/api/v1/voting/submit"


def eligibility_url(voter):
    return f"/api/v1/voting/eligibility/{voter['votingNumber']}"


def vote_counts(db, election):
    registry = CandidateRegistry(db)
    return {name: registry.get(c["_id"])["voteCount"] for name, c in election.items() if name != "voter"}


def has_voted(db, voter):
    return VoterRegistry(db).collection.find_one({"_id": voter["_id"]})["hasVoted"]


class RecordingBroadcaster:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def vote_recorded(self, constituency, ward):
        if self.fail:
            raise RuntimeError("socket gone")
        self.events.append({"constituency": constituency, "ward": ward})


# ------------------------------
# Eligibility
# ------------------------------

def test_eligibility_lists_candidates_for_voter_area(client, election):
    response = client.get(eligibility_url(election["voter"]))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["voter"] == {"fullName": "Voter Number 1", "constituency": "Mwea", "ward": "Mwea"}
    names = {p: [c["fullName"] for c in cands] for p, cands in data["eligibleCandidates"].items()}
    assert names == {
        "Governor": ["Anne Wairimu"],
        "Women Representative": ["Beatrice Njeri"],
        "MP": ["Charles Muriithi"],
        "MCA": ["David Kamau"],
    }
    assert data["votingDeadline"] is None


def test_eligibility_is_repeatable_and_read_only(client, db, election):
    audit_before = AuditLog(db).collection.count_documents({})

    first = client.get(eligibility_url(election["voter"])).json()
    second = client.get(eligibility_url(election["voter"])).json()

    assert first == second
    assert has_voted(db, election["voter"]) is False
    assert BallotStore(db).count() == 0
    assert AuditLog(db).collection.count_documents({}) == audit_before


def test_eligibility_refused_while_portal_closed(client, db, election):
    SettingsStore(db).set_portal_open(False)

    response = client.get(eligibility_url(election["voter"]))

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "PortalClosed"
    assert "data" not in body


def test_eligibility_unknown_voting_number(client, election):
    response = client.get("/api/v1/voting/eligibility/KGY-MWE-000000-0000")
    assert response.status_code == 404
    assert response.json()["code"] == "InvalidCredential"


def test_eligibility_deactivated_voter(client, db, election):
    VoterRegistry(db).deactivate(election["voter"]["votingNumber"])
    response = client.get(eligibility_url(election["voter"]))
    assert response.json()["code"] == "InvalidCredential"


# ------------------------------
# Accepted submission
# ------------------------------

def test_accepted_ballot_commits_everything(client, db, election, full_ballot):
    voting_number = election["voter"]["votingNumber"]

    response = client.post(SUBMIT, json={"votingNumber": voting_number, "votes": full_ballot})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Vote submitted successfully"
    assert body["data"]["positions"] == ["Governor", "Women Representative", "MP", "MCA"]
    assert body["data"]["votedAt"]

    assert BallotStore(db).count_for(voting_number) == 4
    assert has_voted(db, election["voter"]) is True
    assert vote_counts(db, election) == {"governor": 1, "women_rep": 1, "mp": 1, "mca": 1, "mca_thiba": 0}

    mca = ResultsAggregator(db).tally("MCA", constituency="Mwea", ward="Mwea")
    assert mca["totalVotes"] == 1
    assert mca["winner"]["candidateId"] == str(election["mca"]["_id"])


def test_vote_records_carry_voter_area(client, db, election, full_ballot):
    client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    votes = list(BallotStore(db).collection.find({}))
    assert {v["position"] for v in votes} == {"Governor", "Women Representative", "MP", "MCA"}
    assert all((v["county"], v["constituency"], v["ward"]) == ("Kirinyaga", "Mwea", "Mwea") for v in votes)
    assert len({v["ballotId"] for v in votes}) == 1


def test_vote_audit_entry_has_no_voter_identity(client, db, election, full_ballot):
    client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    entry = AuditLog(db).collection.find_one({"action": "VOTE"})
    assert entry["adminId"] is None
    assert entry["entityId"] is None
    assert entry["details"] == {
        "constituency": "Mwea",
        "ward": "Mwea",
        "positions": ["Governor", "Women Representative", "MP", "MCA"],
    }
    assert election["voter"]["votingNumber"] not in str(entry)


def test_second_submission_is_already_voted(client, db, election, full_ballot):
    payload = {"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot}
    client.post(SUBMIT, json=payload)

    response = client.post(SUBMIT, json=payload)

    assert response.status_code == 409
    assert response.json()["code"] == "AlreadyVoted"
    assert BallotStore(db).count() == 4
    assert vote_counts(db, election)["governor"] == 1


def test_side_effects_run_after_commit(db, election, full_ballot):
    broadcaster = RecordingBroadcaster()
    notified = []
    service = VotingService(db, broadcaster=broadcaster, use_transactions=False)

    receipt = service.submit_ballot(
        election["voter"]["votingNumber"], full_ballot, notify=lambda voter, voted_at: notified.append((voter, voted_at))
    )

    assert broadcaster.events == [{"constituency": "Mwea", "ward": "Mwea"}]
    assert [(v["votingNumber"], at) for v, at in notified] == [(election["voter"]["votingNumber"], receipt["votedAt"])]


def test_confirmation_email_states_commit_time(client, db, election, full_ballot):
    sent = []

    class RecordingNotifier:
        enabled = True

        def send_vote_confirmation(self, voter, voted_at=None):
            sent.append((voter["votingNumber"], voted_at))
            return True

    app.dependency_overrides[get_notifier] = lambda: RecordingNotifier()

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.status_code == 200
    assert [number for number, _ in sent] == [election["voter"]["votingNumber"]]
    assert sent[0][1].isoformat() == response.json()["data"]["votedAt"]


def test_collaborator_failures_do_not_fail_the_vote(db, election, full_ballot):
    def broken_notify(voter, voted_at):
        raise RuntimeError("mail queue down")

    service = VotingService(db, broadcaster=RecordingBroadcaster(fail=True), use_transactions=False)

    receipt = service.submit_ballot(election["voter"]["votingNumber"], full_ballot, notify=broken_notify)

    assert receipt["message"] == "Vote submitted successfully"
    assert BallotStore(db).count() == 4


# ------------------------------
# Rejected submissions
# ------------------------------

def _assert_nothing_written(db, election):
    assert BallotStore(db).count() == 0
    assert has_voted(db, election["voter"]) is False
    assert set(vote_counts(db, election).values()) == {0}


def test_missing_position_rejected(client, db, election, full_ballot):
    votes = [c for c in full_ballot if c["position"] != "MCA"]

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": votes})

    assert response.status_code == 400
    assert response.json()["code"] == "MissingPosition"
    assert response.json()["detail"] == "Missing vote for position: MCA"
    _assert_nothing_written(db, election)


def test_empty_ballot_rejected(client, db, election):
    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": []})
    assert response.status_code == 400
    assert response.json()["code"] == "MissingPosition"


def test_duplicate_position_rejected(client, db, election, full_ballot):
    votes = full_ballot + [{"position": "Governor", "candidateId": str(election["governor"]["_id"])}]

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": votes})

    assert response.status_code == 400
    assert response.json()["code"] == "DuplicatePosition"
    _assert_nothing_written(db, election)


def test_unknown_position_is_a_request_error(client, election, full_ballot):
    votes = full_ballot + [{"position": "Senator", "candidateId": str(election["governor"]["_id"])}]
    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": votes})
    assert response.status_code == 422
    assert response.json()["success"] is False
    assert response.json()["code"] == "InvalidRequest"
    assert response.json()["detail"][0]["loc"][-1] == "position"


def test_missing_voting_number_is_a_request_error(client, db, election, full_ballot):
    response = client.post(SUBMIT, json={"votes": full_ballot})

    assert response.status_code == 422
    assert response.json()["code"] == "InvalidRequest"
    _assert_nothing_written(db, election)


def test_mca_from_another_ward_is_ineligible(client, db, election, full_ballot):
    full_ballot[3]["candidateId"] = str(election["mca_thiba"]["_id"])

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.status_code == 400
    assert response.json()["code"] == "IneligibleCandidate"
    _assert_nothing_written(db, election)


def test_candidate_for_a_different_position_is_ineligible(client, db, election, full_ballot):
    full_ballot[0]["candidateId"] = str(election["women_rep"]["_id"])

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.json()["code"] == "IneligibleCandidate"
    _assert_nothing_written(db, election)


@pytest.mark.parametrize("candidate_id", ["not-an-object-id", "64b7f0c2a1e4d3b2c1a09f88"])
def test_unknown_candidate_is_invalid(client, db, election, full_ballot, candidate_id):
    full_ballot[2]["candidateId"] = candidate_id

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.status_code == 400
    assert response.json()["code"] == "InvalidCandidate"
    _assert_nothing_written(db, election)


def test_inactive_candidate_is_invalid(client, db, election, full_ballot):
    CandidateRegistry(db).collection.update_one({"_id": election["mp"]["_id"]}, {"$set": {"isActive": False}})

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.json()["code"] == "InvalidCandidate"


def test_portal_closed_between_eligibility_and_submit(client, db, election, full_ballot):
    assert client.get(eligibility_url(election["voter"])).status_code == 200
    SettingsStore(db).set_portal_open(False)

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.status_code == 403
    assert response.json()["code"] == "PortalClosed"
    _assert_nothing_written(db, election)


# ------------------------------
# Races and store failures
# ------------------------------

def test_losing_a_race_on_the_unique_index_leaves_no_partial_ballot(db, election, full_ballot):
    voter = election["voter"]
    # A concurrent submission has already claimed the MCA slot for this voting number
    BallotStore(db).insert_vote({
        "votingNumber": voter["votingNumber"], "position": "MCA",
        "candidateId": election["mca"]["_id"], "county": "Kirinyaga",
        "constituency": "Mwea", "ward": "Mwea", "ballotId": "winner",
        "votedAt": datetime.now(timezone.utc),
    })
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False)

    with pytest.raises(AlreadyVoted):
        service.submit_ballot(voter["votingNumber"], full_ballot)

    remaining = list(BallotStore(db).collection.find({"votingNumber": voter["votingNumber"]}))
    assert [v["ballotId"] for v in remaining] == ["winner"]
    assert set(vote_counts(db, election).values()) == {0}
    assert has_voted(db, voter) is False


def test_losing_the_voter_flip_rolls_back_own_votes(db, election, full_ballot, monkeypatch):
    voter = election["voter"]
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False)
    stale = dict(voter)
    monkeypatch.setattr(service.voters, "find_active", lambda voting_number: stale)
    # Another request flipped the voter after this one passed validation
    VoterRegistry(db).mark_voted(voter["votingNumber"])

    with pytest.raises(AlreadyVoted):
        service.submit_ballot(voter["votingNumber"], full_ballot)

    assert BallotStore(db).count() == 0
    assert set(vote_counts(db, election).values()) == {0}
    assert has_voted(db, voter) is True


def test_store_failure_mid_commit_is_compensated(client, db, election, full_ballot, monkeypatch):
    original = CandidateRegistry.increment_vote_count
    calls = {"n": 0}

    def flaky_increment(self, candidate_id, amount=1, session=None):
        calls["n"] += 1
        if calls["n"] == 2:
            raise AutoReconnect("connection reset by peer")
        return original(self, candidate_id, amount, session=session)

    monkeypatch.setattr(CandidateRegistry, "increment_vote_count", flaky_increment)

    response = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})

    assert response.status_code == 503
    assert response.json()["code"] == "StoreUnavailable"
    assert "reset" not in response.json()["detail"]
    _assert_nothing_written(db, election)

    # The voter can retry once the store is back
    monkeypatch.setattr(CandidateRegistry, "increment_vote_count", original)
    retry = client.post(SUBMIT, json={"votingNumber": election["voter"]["votingNumber"], "votes": full_ballot})
    assert retry.status_code == 200
    assert BallotStore(db).count() == 4


def test_abandoned_ballot_does_not_lock_out_the_voter(db, election, full_ballot, monkeypatch):
    voter = election["voter"]
    insert_vote, discard_ballot = BallotStore.insert_vote, BallotStore.discard_ballot
    calls = {"insert": 0, "discard": 0}

    def flaky_insert(self, vote, session=None):
        calls["insert"] += 1
        if calls["insert"] == 3:
            raise AutoReconnect("connection reset by peer")
        return insert_vote(self, vote, session=session)

    def flaky_discard(self, ballot_id):
        calls["discard"] += 1
        if calls["discard"] == 1:
            raise AutoReconnect("connection reset by peer")
        return discard_ballot(self, ballot_id)

    monkeypatch.setattr(BallotStore, "insert_vote", flaky_insert)
    monkeypatch.setattr(BallotStore, "discard_ballot", flaky_discard)

    with pytest.raises(StoreUnavailable):
        VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False).submit_ballot(
            voter["votingNumber"], full_ballot
        )
    # Cleanup failed too: two records are left behind and the voter is still un-voted
    assert BallotStore(db).count() == 2
    assert has_voted(db, voter) is False

    # Within the grace period the leftovers may belong to an attempt still in flight
    with pytest.raises(AlreadyVoted):
        VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False).submit_ballot(
            voter["votingNumber"], full_ballot
        )

    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False, stale_ballot_seconds=0)
    receipt = service.submit_ballot(voter["votingNumber"], full_ballot)

    assert receipt["message"] == "Vote submitted successfully"
    assert BallotStore(db).count() == 4
    assert has_voted(db, voter) is True
    assert ResultsAggregator(db).tally("Governor")["totalVotes"] == 1
    assert vote_counts(db, election)["governor"] == 1


def test_stale_ballots_of_voters_who_voted_are_kept(db, election, full_ballot):
    voter = election["voter"]
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=False, stale_ballot_seconds=0)
    service.submit_ballot(voter["votingNumber"], full_ballot)

    assert service.purge_stale_ballots() == []
    assert BallotStore(db).count() == 4


# ------------------------------
# Transactional commit
# ------------------------------

class FakeSession:
    """Runs the transaction callback inline and records which writes received it."""

    def __init__(self):
        self.transactions = 0
        self.writes = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def with_transaction(self, callback):
        self.transactions += 1
        return callback(self)


@pytest.fixture
def session(db, monkeypatch):
    fake = FakeSession()
    monkeypatch.setattr(db.client, "start_session", lambda: fake, raising=False)
    insert_vote = BallotStore.insert_vote
    mark_voted = VoterRegistry.mark_voted
    increment = CandidateRegistry.increment_vote_count

    def recording_insert(self, vote, session=None):
        fake.writes.append(("insert_vote", session))
        return insert_vote(self, vote)

    def recording_mark(self, voting_number, session=None):
        fake.writes.append(("mark_voted", session))
        return mark_voted(self, voting_number)

    def recording_increment(self, candidate_id, amount=1, session=None):
        fake.writes.append(("increment_vote_count", session))
        return increment(self, candidate_id, amount)

    monkeypatch.setattr(BallotStore, "insert_vote", recording_insert)
    monkeypatch.setattr(VoterRegistry, "mark_voted", recording_mark)
    monkeypatch.setattr(CandidateRegistry, "increment_vote_count", recording_increment)
    return fake


def test_transaction_passes_session_to_every_write(db, election, full_ballot, session):
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=True)

    receipt = service.submit_ballot(election["voter"]["votingNumber"], full_ballot)

    assert receipt["message"] == "Vote submitted successfully"
    assert session.transactions == 1
    assert [name for name, _ in session.writes] == ["insert_vote"] * 4 + ["mark_voted"] + ["increment_vote_count"] * 4
    assert all(used is session for _, used in session.writes)
    assert has_voted(db, election["voter"]) is True


def test_transaction_duplicate_key_is_already_voted(db, election, full_ballot, session):
    voter = election["voter"]
    db["votes"].insert_one({
        "votingNumber": voter["votingNumber"], "position": "MCA", "candidateId": election["mca"]["_id"],
        "constituency": "Mwea", "ward": "Mwea", "ballotId": "winner", "votedAt": datetime.now(timezone.utc),
    })
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=True)

    with pytest.raises(AlreadyVoted):
        service.submit_ballot(voter["votingNumber"], full_ballot)

    assert session.writes[-1] == ("insert_vote", session)


def test_transaction_store_error_is_store_unavailable(db, election, full_ballot, session, monkeypatch):
    def failing_increment(self, candidate_id, amount=1, session=None):
        raise OperationFailure("Transaction was aborted")

    monkeypatch.setattr(CandidateRegistry, "increment_vote_count", failing_increment)
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=True)

    with pytest.raises(StoreUnavailable):
        service.submit_ballot(election["voter"]["votingNumber"], full_ballot)


def test_transaction_lost_flip_is_already_voted(db, election, full_ballot, session):
    voter = election["voter"]
    service = VotingService(db, broadcaster=RecordingBroadcaster(), use_transactions=True)
    stale = dict(voter)
    service.voters.find_active = lambda voting_number: stale
    VoterRegistry(db).collection.update_one({"_id": voter["_id"]}, {"$set": {"hasVoted": True}})

    with pytest.raises(AlreadyVoted) as excinfo:
        service.submit_ballot(voter["votingNumber"], full_ballot)

    assert excinfo.value.message == AlreadyVoted.default_message
    assert ("mark_voted", session) in session.writes
    assert ("increment_vote_count", session) not in session.writes
