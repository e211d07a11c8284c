"""Tests for lifecycle dispatch."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

import pytest
from terraform_mock import FakeProcessRunner, render_state

from pteraform.errors import (
    ArtifactNotFound,
    CancellationFailure,
    InvocationFailure,
    MissingAttributeError,
)
from pteraform.models import ManagedUnitRecord
from pteraform.reconciler import (
    CreateRequest,
    DeleteRequest,
    Diagnostic,
    ImportRequest,
    ReadRequest,
    Reconciler,
    UpdateRequest,
    Verb,
)
from pteraform.runner import Phase


def digest_of(args: list[str]) -> str:
    return hashlib.sha256(render_state(args).encode()).hexdigest()


@pytest.fixture
def working_dir(tmp_path: Path) -> Path:
    path = tmp_path / "A"
    path.mkdir()
    return path


@pytest.fixture
def runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def reconciler(runner: FakeProcessRunner) -> Reconciler:
    return Reconciler(runner=runner)


class TestCreate:
    """Tests for the create verb."""

    @pytest.mark.asyncio
    async def test_create_stores_state_digest(
        self, reconciler: Reconciler, runner: FakeProcessRunner, working_dir: Path
    ) -> None:
        """Test create runs init and apply, then records the digest."""
        planned = ManagedUnitRecord(working_dir=str(working_dir))

        result = await reconciler.reconcile(CreateRequest(planned=planned))

        assert result.success
        assert result.verb is Verb.CREATE
        assert runner.phases() == [Phase.INIT, Phase.APPLY]
        assert result.identity == digest_of([])
        assert result.state is not None
        assert result.state.working_dir == str(working_dir)

    @pytest.mark.asyncio
    async def test_caller_supplied_identity_is_discarded(
        self, reconciler: Reconciler, working_dir: Path
    ) -> None:
        """Test the identity is always derived from the artifact."""
        planned = ManagedUnitRecord(working_dir=str(working_dir), id="not-a-digest")

        record = await reconciler.create(planned)

        assert record.id == digest_of([])

    @pytest.mark.asyncio
    async def test_create_requires_working_dir(
        self, reconciler: Reconciler, runner: FakeProcessRunner
    ) -> None:
        """Test a missing working_dir fails before any process runs."""
        result = await reconciler.reconcile(CreateRequest(planned=ManagedUnitRecord()))

        assert isinstance(result.error, MissingAttributeError)
        assert runner.calls == []
        assert result.state is None

    @pytest.mark.asyncio
    async def test_init_failure_aborts(self, working_dir: Path) -> None:
        """Test an init failure stores no identity and never applies."""
        runner = FakeProcessRunner(fail_phase=Phase.INIT)
        reconciler = Reconciler(runner=runner)

        result = await reconciler.reconcile(
            CreateRequest(planned=ManagedUnitRecord(working_dir=str(working_dir)))
        )

        assert not result.success
        assert isinstance(result.error, InvocationFailure)
        assert result.error.phase == "init"
        assert runner.phases() == [Phase.INIT]
        assert result.state is None
        assert result.identity is None

    @pytest.mark.asyncio
    async def test_apply_without_state_artifact(self, working_dir: Path) -> None:
        """Test a successful apply that leaves no artifact is fatal."""
        reconciler = Reconciler(runner=FakeProcessRunner(write_state=False))

        with pytest.raises(ArtifactNotFound):
            await reconciler.create(ManagedUnitRecord(working_dir=str(working_dir)))

    @pytest.mark.asyncio
    async def test_cancelled_mid_apply(self, working_dir: Path) -> None:
        """Test cancelling during apply surfaces CancellationFailure."""
        runner = FakeProcessRunner(block_phase=Phase.APPLY)
        reconciler = Reconciler(runner=runner)

        task = asyncio.create_task(
            reconciler.create(ManagedUnitRecord(working_dir=str(working_dir)))
        )
        await runner.started.wait()
        task.cancel()

        with pytest.raises(CancellationFailure):
            await task
        assert not (working_dir / "terraform.tfstate").exists()


class TestRead:
    """Tests for the read verb."""

    @pytest.mark.asyncio
    async def test_read_refreshes_without_provisioning(
        self, reconciler: Reconciler, runner: FakeProcessRunner, working_dir: Path
    ) -> None:
        """Test read hashes the artifact on disk and runs nothing."""
        (working_dir / "terraform.tfstate").write_text(render_state(["-var=x=1"]))
        state = ManagedUnitRecord(working_dir=str(working_dir), id="stale")

        result = await reconciler.reconcile(ReadRequest(state=state))

        assert result.success
        assert result.identity == digest_of(["-var=x=1"])
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_read_is_idempotent(self, reconciler: Reconciler, working_dir: Path) -> None:
        """Test consecutive reads of an unchanged artifact agree."""
        (working_dir / "terraform.tfstate").write_text(render_state([]))
        state = ManagedUnitRecord(working_dir=str(working_dir))

        first = await reconciler.read(state)
        second = await reconciler.read(first)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_read_missing_artifact_never_reports_stale_identity(
        self, reconciler: Reconciler, working_dir: Path
    ) -> None:
        """Test a missing artifact surfaces ArtifactNotFound and no state."""
        state = ManagedUnitRecord(working_dir=str(working_dir), id="previous")

        result = await reconciler.reconcile(ReadRequest(state=state))

        assert isinstance(result.error, ArtifactNotFound)
        assert result.state is None
        assert result.identity is None
        assert result.removed is False

    @pytest.mark.asyncio
    async def test_read_after_import_requires_working_dir(self, reconciler: Reconciler) -> None:
        """Test read of an imported record without working_dir fails loudly."""
        with pytest.raises(MissingAttributeError) as exc_info:
            await reconciler.read(ManagedUnitRecord.imported("abc"))

        assert exc_info.value.attribute == "working_dir"


class TestUpdate:
    """Tests for the update verb."""

    @pytest.mark.asyncio
    async def test_update_always_reprovisions(
        self, reconciler: Reconciler, runner: FakeProcessRunner, working_dir: Path
    ) -> None:
        """Test update re-runs the full cycle even if nothing differs."""
        record = await reconciler.create(ManagedUnitRecord(working_dir=str(working_dir)))

        result = await reconciler.reconcile(UpdateRequest(planned=record, prior=record))

        assert result.success
        assert runner.phases() == [Phase.INIT, Phase.APPLY, Phase.INIT, Phase.APPLY]
        assert result.identity == record.id

    @pytest.mark.asyncio
    async def test_end_to_end_identity_changes(
        self, reconciler: Reconciler, runner: FakeProcessRunner, working_dir: Path
    ) -> None:
        """Test create then update with new args yields a new digest."""
        d1 = (await reconciler.create(ManagedUnitRecord(working_dir=str(working_dir)))).id

        planned = ManagedUnitRecord(working_dir=str(working_dir), args=["-var=value=cool"])
        d2 = (await reconciler.update(planned)).id

        assert d1 is not None and d2 is not None
        assert d1 != d2
        assert runner.calls_for(Phase.APPLY)[-1].args == ("-var=value=cool",)

    @pytest.mark.asyncio
    async def test_update_failure_drops_identity(self, working_dir: Path) -> None:
        """Test a failed update returns no identity at all."""
        reconciler = Reconciler(runner=FakeProcessRunner(fail_phase=Phase.APPLY))
        prior = ManagedUnitRecord(working_dir=str(working_dir), id="d1")

        result = await reconciler.reconcile(UpdateRequest(planned=prior, prior=prior))

        assert isinstance(result.error, InvocationFailure)
        assert result.identity is None


class TestDelete:
    """Tests for the delete verb."""

    @pytest.mark.asyncio
    async def test_delete_is_a_no_op(
        self, reconciler: Reconciler, runner: FakeProcessRunner, working_dir: Path
    ) -> None:
        """Test delete runs nothing and leaves the directory untouched."""
        (working_dir / "main.tf").write_text('resource "null_resource" "x" {}\n')
        (working_dir / "terraform.tfstate").write_text(render_state([]))
        before = {p.name: p.read_bytes() for p in working_dir.iterdir()}
        state = ManagedUnitRecord(working_dir=str(working_dir), id=digest_of([]))

        result = await reconciler.reconcile(DeleteRequest(state=state))

        assert result.success
        assert result.removed is True
        assert result.state is None
        assert runner.calls == []
        assert {p.name: p.read_bytes() for p in working_dir.iterdir()} == before


class TestImport:
    """Tests for import passthrough."""

    @pytest.mark.asyncio
    async def test_import_populates_only_identity(
        self, reconciler: Reconciler, runner: FakeProcessRunner
    ) -> None:
        """Test import copies the identity and resolves nothing else."""
        result = await reconciler.reconcile(ImportRequest(identity="abc123"))

        assert result.success
        assert result.state == ManagedUnitRecord.imported("abc123")
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_import_rejects_empty_identity(self, reconciler: Reconciler) -> None:
        """Test an empty import identity is an error."""
        result = await reconciler.reconcile(ImportRequest(identity=""))

        assert isinstance(result.error, MissingAttributeError)


class TestConcurrency:
    """Tests for independent units reconciled together."""

    @pytest.mark.asyncio
    async def test_independent_units(self, reconciler: Reconciler, tmp_path: Path) -> None:
        """Test concurrent creates of different directories do not interfere."""
        dirs = [tmp_path / name for name in ("first", "second", "third")]
        for d in dirs:
            d.mkdir()

        results = await asyncio.gather(
            *(
                reconciler.reconcile(
                    CreateRequest(
                        planned=ManagedUnitRecord(working_dir=str(d), args=[f"-var=name={d.name}"])
                    )
                )
                for d in dirs
            )
        )

        assert all(r.success for r in results)
        assert [r.identity for r in results] == [
            digest_of([f"-var=name={d.name}"]) for d in dirs
        ]


class TestDiagnostic:
    """Tests for user-visible diagnostics."""

    def test_invocation_failure(self) -> None:
        """Test provisioning failures use the apply message."""
        diagnostic = Diagnostic.from_error(InvocationFailure("apply", "boom", 1))

        assert diagnostic.summary == "Client Error"
        assert diagnostic.detail.startswith("Unable to run terraform apply, got error:")
        assert "boom" in diagnostic.detail

    def test_artifact_failure(self, tmp_path: Path) -> None:
        """Test artifact failures use the ID message."""
        diagnostic = Diagnostic.from_error(ArtifactNotFound(tmp_path / "terraform.tfstate"))

        assert diagnostic.detail.startswith("Unable to get ID, got error:")

    def test_cancellation(self) -> None:
        """Test cancellation is reported distinctly."""
        diagnostic = Diagnostic.from_error(CancellationFailure("terraform apply"))

        assert diagnostic.summary == "Operation Cancelled"

    @pytest.mark.asyncio
    async def test_result_diagnostic(self, reconciler: Reconciler) -> None:
        """Test a failed result exposes its diagnostic, a success none."""
        failed = await reconciler.reconcile(CreateRequest(planned=ManagedUnitRecord()))
        imported = await reconciler.reconcile(ImportRequest(identity="x"))

        assert failed.diagnostic() is not None
        assert imported.diagnostic() is None
        assert imported.duration_seconds >= 0.0
