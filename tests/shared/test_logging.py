from batchfeed.shared.observability.logging import add_run_id, run_id_ctx, set_run_id


def test_run_id_is_added_to_events():
    token = run_id_ctx.set(None)
    try:
        assert add_run_id(None, "info", {"event": "x"}) == {"event": "x"}

        set_run_id("abc123")
        event = add_run_id(None, "info", {"event": "x"})
        assert event["run_id"] == "abc123"

        explicit = add_run_id(None, "info", {"event": "x", "run_id": "other"})
        assert explicit["run_id"] == "other"
    finally:
        run_id_ctx.reset(token)
