"""Tests for stages/listing.py -- PathFilter rules and list_remote."""

import pytest

from library_digest.errors import TransportError
from library_digest.models import RemoteEntry
from library_digest.stages.listing import PathFilter, list_remote

from conftest import FakeSource


@pytest.fixture
def path_filter():
    return PathFilter()


class TestPathFilter:
    @pytest.mark.parametrize(
        "path",
        ["/x/report.zip", "/x/.DS_Store", "/x/._a.pdf", "/x/upload.part", "/x/b.TMP.tmp"],
    )
    def test_default_rules_exclude(self, path_filter, path):
        assert not path_filter.admit(RemoteEntry(path=path))

    @pytest.mark.parametrize("path", ["/x/a.pdf", "/x/b.jpg", "/x/zipcodes.csv", "/x/DS_Store.txt"])
    def test_default_rules_admit(self, path_filter, path):
        assert path_filter.admit(RemoteEntry(path=path))

    def test_directories_never_admitted(self, path_filter):
        entry = RemoteEntry(path="/x/photos", is_directory=True)
        assert path_filter.excluded_by(entry) == "<directory>"

    def test_returns_first_matching_rule(self):
        pf = PathFilter([r"\.pdf$", r"^draft"])
        assert pf.excluded_by(RemoteEntry(path="/draft.pdf")) == r"\.pdf$"

    def test_matches_name_not_directory(self):
        pf = PathFilter([r"^archive"])
        assert pf.admit(RemoteEntry(path="/archive/a.pdf"))

    def test_report_identifier_is_not_exclusion(self):
        pf = PathFilter(report_identifier="RFI-9")
        assert pf.admit(RemoteEntry(path="/RFI-9/RFI-9 minutes.pdf"))

    def test_no_rules_admits_everything(self):
        assert PathFilter([]).admit(RemoteEntry(path="/x/report.zip"))


class TestListRemote:
    def test_streams_entries_in_source_order(self):
        source = FakeSource({"a.pdf": b"1", "b.jpg": b"2"}, directories=("photos",))
        paths = [e.path for e in list_remote(source, "/")]
        assert paths == ["photos", "a.pdf", "b.jpg"]

    def test_error_after_partial_results(self):
        source = FakeSource({"a.pdf": b"1", "b.jpg": b"2"}, fail_listing_after=1)
        seen = []
        with pytest.raises(TransportError):
            for entry in list_remote(source, "/"):
                seen.append(entry.path)
        assert seen == ["a.pdf"]
