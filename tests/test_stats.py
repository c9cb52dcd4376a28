"""Tests for stats aggregation."""


def test_empty_store(store):
    stats = store.stats()

    assert stats.total_memories == 0
    assert stats.by_area == {}
    assert stats.by_project == {}
    assert stats.total_size_bytes == 0


def test_aggregation(store):
    store.add("fix one", area="solutions", project="proj-X")
    store.add("fix two", area="solutions", project="proj-X")
    store.add("tabs please", area="preferences", project="proj-Y")
    store.add("misc note")

    stats = store.stats()

    assert stats.total_memories == 4
    assert stats.by_area == {"solutions": 2, "preferences": 1, "general": 1}
    assert stats.by_project == {"proj-X": 2, "proj-Y": 1, "unassigned": 1}


def test_missing_area_counted_as_general(store):
    memory_id = store.add("legacy row")
    with store._backend.connection as conn:
        conn.execute("UPDATE memories SET area = NULL WHERE id = ?", (memory_id,))

    assert store.stats().by_area == {"general": 1}


def test_stats_are_fresh(store):
    memory_id = store.add("first", project="proj-X")
    assert store.stats().by_project == {"proj-X": 1}

    store.update(memory_id, project=None)
    assert store.stats().by_project == {"unassigned": 1}

    store.delete(memory_id)
    assert store.stats().total_memories == 0


def test_in_memory_size_is_zero(store):
    store.add("note")
    assert store.stats().total_size_bytes == 0


def test_file_size_reported(file_store):
    file_store.add("note on disk")
    stats = file_store.stats()
    assert stats.total_size_bytes > 0
    assert stats.to_dict()["total_size_bytes"] == stats.total_size_bytes
