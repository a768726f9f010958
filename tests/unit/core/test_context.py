"""Tests for the explicit request context."""

from beacon.core.context import RequestContext, background_context


class TestRequestContext:
    """Test log fields and scoping."""

    def test_log_extra_includes_set_fields(self) -> None:
        """Only populated identity fields are added."""
        ctx = RequestContext(request_id="req-1", organization_id="org_1")

        assert ctx.log_extra(event_id="evt_1") == {
            "request_id": "req-1",
            "organization_id": "org_1",
            "event_id": "evt_1",
        }

    def test_with_scope_copies(self) -> None:
        """Scoping returns a new context and keeps the original."""
        ctx = RequestContext(request_id="req-1")
        scoped = ctx.with_scope(project_id="proj_1")

        assert scoped.project_id == "proj_1"
        assert scoped.request_id == "req-1"
        assert ctx.project_id is None

    def test_generated_request_ids_differ(self) -> None:
        """Each context gets its own id."""
        assert RequestContext().request_id != RequestContext().request_id

    def test_background_context(self) -> None:
        """Background work is tagged as a job."""
        ctx = background_context("org_1")
        assert ctx.request_id.startswith("job-")
        assert ctx.organization_id == "org_1"
