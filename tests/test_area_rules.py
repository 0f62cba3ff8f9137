import pytest

from evoting.reference_data import (
    CONSTITUENCIES,
    POSITIONS,
    all_wards,
    constituencies_of_ward,
    is_valid_ward,
    scope_of,
)
from evoting.voting import VotingService, area_criteria, candidate_is_eligible

MWEA_THIBA = {"county": "Kirinyaga", "constituency": "Mwea", "ward": "Thiba"}
CENTRAL_THIBA = {"county": "Kirinyaga", "constituency": "Kirinyaga Central", "ward": "Thiba"}


def test_reference_data():
    assert len(CONSTITUENCIES) == 5
    assert POSITIONS == ["Governor", "Women Representative", "MP", "MCA"]
    assert constituencies_of_ward("Thiba") == ["Kirinyaga Central", "Mwea"]
    assert is_valid_ward("Mwea", "Thiba")
    assert not is_valid_ward("Gichugu", "Thiba")
    assert len(all_wards()) == len(set(all_wards()))


def test_unknown_position_has_no_scope():
    with pytest.raises(KeyError):
        scope_of("Senator")


@pytest.mark.parametrize(
    "position, expected",
    [
        ("Governor", {"position": "Governor", "county": "Kirinyaga"}),
        ("Women Representative", {"position": "Women Representative", "county": "Kirinyaga"}),
        ("MP", {"position": "MP", "county": "Kirinyaga", "constituency": "Mwea"}),
        ("MCA", {"position": "MCA", "county": "Kirinyaga", "constituency": "Mwea", "ward": "Thiba"}),
    ],
)
def test_area_criteria(position, expected):
    assert area_criteria(position, MWEA_THIBA) == expected


def test_ward_name_alone_does_not_make_an_mca_eligible():
    central_mca = {"position": "MCA", "county": "Kirinyaga", "constituency": "Kirinyaga Central", "ward": "Thiba"}

    assert candidate_is_eligible(central_mca, CENTRAL_THIBA, "MCA")
    assert not candidate_is_eligible(central_mca, MWEA_THIBA, "MCA")


def test_county_seat_is_eligible_everywhere_in_county():
    governor = {"position": "Governor", "county": "Kirinyaga", "constituency": None, "ward": None}

    assert candidate_is_eligible(governor, MWEA_THIBA, "Governor")
    assert candidate_is_eligible(governor, CENTRAL_THIBA, "Governor")
    assert not candidate_is_eligible(governor, MWEA_THIBA, "MP")


def test_same_named_wards_get_separate_ballots(db, election, make_voter):
    mwea_thiba = make_voter(ward="Thiba")
    central_thiba = make_voter(constituency="Kirinyaga Central", ward="Thiba")
    service = VotingService(db, use_transactions=False)

    mwea_ballot = service.check_eligibility(mwea_thiba["votingNumber"])["eligibleCandidates"]
    central_ballot = service.check_eligibility(central_thiba["votingNumber"])["eligibleCandidates"]

    assert [c["fullName"] for c in mwea_ballot["MCA"]] == ["Esther Wanjiku"]
    assert central_ballot["MCA"] == []
    assert central_ballot["MP"] == []
    assert [c["fullName"] for c in central_ballot["Governor"]] == ["Anne Wairimu"]
