from shared.players.tracker import PlayerTracker


def test_increment_is_idempotent_and_case_insensitive():
    tracker = PlayerTracker()
    assert tracker.increment("Alice") == 1
    assert tracker.increment(" alice ") == 1
    assert tracker.increment("ALICE") == 1
    assert tracker.increment("Bob") == 2
    assert "aLiCe" in tracker


def test_decrement_never_goes_negative():
    tracker = PlayerTracker()
    assert tracker.decrement("ghost") == 0
    tracker.increment("Alice")
    assert tracker.decrement("ALICE") == 0
    assert tracker.decrement("alice") == 0


def test_empty_names_ignored():
    tracker = PlayerTracker()
    assert tracker.increment("   ") == 0
    assert tracker.increment(None) == 0


def test_reset():
    tracker = PlayerTracker()
    tracker.increment("Alice")
    tracker.increment("Bob")
    tracker.reset()
    assert tracker.count == 0
    assert tracker.players == frozenset()


def test_players_is_a_snapshot():
    tracker = PlayerTracker()
    tracker.increment("Alice")
    snapshot = tracker.players
    tracker.increment("Bob")
    assert snapshot == frozenset({"alice"})
    assert len(tracker) == 2
