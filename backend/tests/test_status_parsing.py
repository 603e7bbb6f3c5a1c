import pytest

from gradtracker.models import ApplicationStatus


@pytest.mark.parametrize("raw", ["Accepted", "accepted", " Accepted ", "ACCEPTED"])
def test_accepted_spellings_normalize_to_same_value(raw):
    assert ApplicationStatus.parse(raw) is ApplicationStatus.ACCEPTED


@pytest.mark.parametrize("raw", ["In Progress", "in progress", "IN_PROGRESS", "in_progress"])
def test_matches_member_name_or_label(raw):
    assert ApplicationStatus.parse(raw) is ApplicationStatus.IN_PROGRESS


@pytest.mark.parametrize("raw", ["Waitlisted", "", "   ", None, "inprogress"])
def test_unknown_or_blank_falls_back_to_other(raw):
    assert ApplicationStatus.parse(raw) is ApplicationStatus.OTHER


def test_label_is_display_text():
    assert ApplicationStatus.IN_PROGRESS.label == "In Progress"
