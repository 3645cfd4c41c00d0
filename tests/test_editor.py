import json
from datetime import datetime

import pytest

from featureservice import (
    GeometryFeature,
    Mapped,
    Point,
    PreconditionError,
    RestError,
    Service,
    delete,
    insert_into,
    update,
)

from .conftest import SERVICE_URL


class Incident(GeometryFeature):
    geometry_class = Point

    req_type = Mapped("req_type", str)
    status = Mapped("status", str, domain="Status")
    created = Mapped("created_date", datetime, read_only=True)


def edit_calls(session):
    return session.calls_to("/0/applyEdits")


class TestInsert:
    def test_insert_sends_codes_and_refetches(self, server, service, session):
        incident = Incident(req_type="Graffiti", status="Open", geometry=Point(5, 6))

        result = insert_into(incident, service, "Incidents")

        assert result
        assert result.error is None
        sent = json.loads(edit_calls(session)[-1]["params"]["adds"])
        assert sent == [{"attributes": {"req_type": "Graffiti", "status": 1}, "geometry": {"x": 5, "y": 6}}]

        inserted = result.inserted_feature
        assert inserted.object_id == 1
        assert inserted.status == "Open"
        assert inserted.created is not None
        assert inserted.service is service
        assert not inserted.is_dirty

    def test_original_instance_is_untouched(self, server, service):
        incident = Incident(req_type="Graffiti", status="Open")

        insert_into(incident, service, 0)

        assert incident.object_id == -1
        assert incident.is_dirty

    def test_inserted_features_are_fetched_lazily_once(self, server, service, session):
        result = insert_into([Incident(req_type="A"), Incident(req_type="B")], service, 0)
        before = len(session.calls)

        first = result.inserted_features
        second = result.inserted_features

        assert first is second
        assert [f.req_type for f in first] == ["A", "B"]
        assert len(session.calls) == before + 1

    def test_inserted_feature_requires_a_single_insert(self, server, service):
        result = insert_into([Incident(req_type="A"), Incident(req_type="B")], service, 0)

        with pytest.raises(ValueError):
            result.inserted_feature

    def test_one_failed_record_fails_the_insert(self, server, service):
        server.fail_adds_at = 1

        result = insert_into([Incident(req_type="A"), Incident(req_type="B")], service, 0)

        assert not result
        assert isinstance(result.error, RestError)
        assert "Invalid value" in result.error.response_text
        assert result.inserted_features == []
        assert result.inserted_feature is None

    def test_empty_insert_sends_nothing(self, server, service, session):
        before = len(session.calls)

        assert insert_into([], service, 0)
        assert len(session.calls) == before


class TestUpdate:
    def test_update_sends_changed_fields_only(self, server, service, session):
        server.populate(3)
        incidents = list(service.download(0, Incident))

        incidents[1].status = "Closed"
        result = update(incidents)

        assert result
        sent = json.loads(edit_calls(session)[-1]["params"]["updates"])
        assert sent == [{"attributes": {"OBJECTID": 2, "status": 2}}]
        assert server.records[0][2]["attributes"]["status"] == 2
        assert not any(i.is_dirty for i in incidents)

    def test_update_without_changes_succeeds_without_a_request(self, server, service, session):
        server.populate(2)
        incidents = list(service.download(0, Incident))
        before = len(session.calls)

        result = update(incidents)

        assert result
        assert len(session.calls) == before
        assert not any(i.is_dirty for i in incidents)

    def test_geometry_change_is_sent(self, server, service, session):
        server.populate(1)
        incident = next(service.download(0, Incident))

        incident.geometry = Point(9, 9)
        update(incident)

        sent = json.loads(edit_calls(session)[-1]["params"]["updates"])
        assert sent == [{"attributes": {"OBJECTID": 1}, "geometry": {"x": 9, "y": 9}}]

    def test_unbound_features_are_rejected(self, server, service, session):
        before = len(session.calls)

        with pytest.raises(PreconditionError):
            update(Incident(req_type="A"))

        assert len(session.calls) == before

    def test_mixed_connections_are_rejected_before_sending(self, server, service, client, session):
        server.populate(2)
        default_version = next(service.download(0, Incident))
        edits_version = next(Service(SERVICE_URL, gdb_version="sde.EDITS", client=client).download(0, Incident))
        default_version.status = "Closed"
        edits_version.status = "Closed"
        before = len(session.calls)

        with pytest.raises(PreconditionError):
            update([default_version, edits_version])

        assert len(session.calls) == before

    def test_mixed_layers_are_rejected(self, server, service):
        server.populate(1)
        server.add(1, 1, inspector="Ana", outcome=1)
        incident = next(service.download(0))
        inspection = next(service.download(1))

        with pytest.raises(PreconditionError):
            update([incident, inspection])

    def test_failed_update_keeps_changes(self, server, service):
        server.populate(1)
        incident = next(service.download(0, Incident))
        incident.status = "Closed"
        server.edit_error = {"code": 500, "message": "Unable to complete operation."}

        result = update(incident)

        assert not result
        assert isinstance(result.error, RestError)
        assert incident.is_dirty
        assert incident.changed_fields == ("status",)


class TestDelete:
    def test_delete_unbinds(self, server, service, session):
        server.populate(3)
        incidents = list(service.download(0, Incident))

        result = delete(incidents[:2])

        assert result
        assert edit_calls(session)[-1]["params"]["deletes"] == "1,2"
        assert [i.object_id for i in incidents] == [-1, -1, 3]
        assert incidents[0].service is None
        assert sorted(server.records[0]) == [3]

    def test_delete_requires_bound_features(self, server, service):
        with pytest.raises(PreconditionError):
            delete([Incident()])

    def test_delete_rejects_mixed_connections_before_sending(self, server, service, client, session):
        server.populate(2)
        default_version = next(service.download(0, Incident))
        edits_version = next(Service(SERVICE_URL, gdb_version="sde.EDITS", client=client).download(0, Incident))
        before = len(session.calls)

        with pytest.raises(PreconditionError):
            delete([default_version, edits_version])

        assert len(session.calls) == before
        assert default_version.object_id == 1

    def test_delete_rejects_mixed_layers(self, server, service, session):
        server.populate(1)
        server.add(1, 1, inspector="Ana", outcome=1)
        incident = next(service.download(0))
        inspection = next(service.download(1))
        before = len(session.calls)

        with pytest.raises(PreconditionError):
            delete([incident, inspection])

        assert len(session.calls) == before

    def test_failed_delete_leaves_features_bound(self, server, service):
        server.populate(1)
        incident = next(service.download(0, Incident))
        server.edit_error = {"code": 403, "message": "Delete not allowed"}

        result = delete(incident)

        assert not result
        assert incident.object_id == 1
