"""Progress store tests."""

from uuid import uuid4

from partygame.lib.models import Round, RoundItem, SavedState, ScoreEntry, SessionConfig
from partygame.lib.persistence import ProgressStore


def saved_state() -> SavedState:
    rounds = [Round(item=RoundItem(id=f"i{n}", prompt=f"Item {n}")) for n in range(2)]
    return SavedState(
        session_id=uuid4(),
        config=SessionConfig(desired_count=2),
        current_index=1,
        rounds=rounds,
        ledger=[ScoreEntry(round_id=rounds[0].id, awardee_id="A", points=1)],
        closed_rounds=[rounds[0].id],
    )


async def test_saved_progress_survives_a_new_store(settings):
    state = saved_state()
    await ProgressStore(settings).save_progress(state)

    loaded = await ProgressStore(settings).load_progress(state.session_id)

    assert loaded == state
    assert (settings.progress_dir / f"{state.session_id}.json").exists()


async def test_missing_progress_is_none(progress_store):
    assert await progress_store.load_progress(uuid4()) is None


async def test_corrupt_file_is_treated_as_missing(settings, progress_store):
    session_id = uuid4()
    await progress_store.initialize()
    (settings.progress_dir / f"{session_id}.json").write_text("{not json")

    assert await progress_store.load_progress(session_id) is None


async def test_delete_progress(progress_store):
    state = saved_state()
    await progress_store.save_progress(state)
    assert await progress_store.list_saved() == [state.session_id]

    await progress_store.delete_progress(state.session_id)

    assert await progress_store.load_progress(state.session_id) is None
    assert await progress_store.list_saved() == []


async def test_loaded_state_is_a_copy(progress_store):
    state = saved_state()
    await progress_store.save_progress(state)

    loaded = await progress_store.load_progress(state.session_id)
    loaded.rounds[0].revealed = True

    again = await progress_store.load_progress(state.session_id)
    assert again.rounds[0].revealed is False
