"""In-memory заменители file-list-хранилища для тестов исполнения."""

from types import SimpleNamespace


class FileStore:
    """Листинг источника + лог processed_files с грубой моделью транзакции.

    insert_processed пишет в pending; commit переносит pending в processed,
    rollback выбрасывает.
    """

    def __init__(self, files, *, batched=False, max_batch_size=None):
        self.files = list(files)
        self.processed: list[str] = []
        self.pending: list[str] = []
        self.state = SimpleNamespace(
            list_function='"crunchy_lake"."list_files"',
            file_pattern="s3://bucket/events/*.csv",
            batched=batched,
            max_batch_size=max_batch_size,
        )


class FakeSession:
    def __init__(self, store: FileStore):
        self.store = store
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.store.processed.extend(self.store.pending)
        self.store.pending.clear()
        self.commits += 1

    async def rollback(self):
        self.store.pending.clear()
        self.rollbacks += 1


class FakeFileListRepo:
    def __init__(self, store: FileStore):
        self.store = store
        self.lock_calls = 0

    async def lock_state(self, session, pipeline_name):
        self.lock_calls += 1
        return self.store.state

    async def list_unprocessed(self, session, pipeline_name, *, list_function, file_pattern):
        done = set(self.store.processed)
        return [p for p in self.store.files if p not in done]

    async def processed_among(self, session, pipeline_name, paths):
        done = set(self.store.processed)
        return {p for p in paths if p in done}

    async def insert_processed(self, session, pipeline_name, paths):
        self.store.pending.extend(paths)

    async def remove_processed(self, session, pipeline_name):
        removed = len(self.store.processed)
        self.store.processed.clear()
        return removed


class RecordingCommands:
    """CommandRunner, который запоминает параметры и умеет падать по условию."""

    def __init__(self, fail_when=None, on_run=None):
        self.calls: list[tuple] = []
        self.fail_when = fail_when
        self.on_run = on_run

    async def run(self, session, command, params):
        if self.fail_when is not None and self.fail_when(params):
            raise RuntimeError(f"command failed for {params!r}")
        self.calls.append(tuple(params))
        if self.on_run is not None:
            self.on_run(params)
