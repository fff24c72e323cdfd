from bbm.cli.safe_run import cleanup, ensure_finalized, live_resources, register, unregister


class Closable:
    def __init__(self, log, name, fail=False):
        self.log = log
        self.name = name
        self.fail = fail

    def close(self):
        self.log.append(self.name)
        if self.fail:
            raise RuntimeError("boom")


def test_cleanup_closes_newest_first():
    log = []
    a, b, c = Closable(log, "a"), Closable(log, "b"), Closable(log, "c")
    for obj in (a, b, c):
        register(obj)
    unregister(b)
    cleanup(reason="test")
    assert log == ["c", "a"]
    assert a not in live_resources()


def test_failing_close_does_not_stop_cleanup(capsys):
    log = []
    ok, bad = Closable(log, "ok"), Closable(log, "bad", fail=True)
    register(ok)
    register(bad)
    cleanup(reason="test")
    assert log == ["bad", "ok"]
    assert "raised during cleanup" in capsys.readouterr().err


def test_ensure_finalized_closes_on_error():
    log = []
    obj = Closable(log, "x")
    try:
        with ensure_finalized(obj) as got:
            assert got is obj
            assert obj in live_resources()
            raise ValueError("inside")
    except ValueError:
        pass
    assert log == ["x"]
    assert obj not in live_resources()


def test_dead_references_are_dropped():
    register(Closable([], "temp"))
    assert all(getattr(o, "name", None) != "temp" for o in live_resources())
