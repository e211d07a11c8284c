"""Terraform doubles for testing the provisioning core.

Two levels of fake are provided:

- FakeProcessRunner: an in-process ProcessRunner that records calls and
  writes a synthetic terraform.tfstate on apply. No child processes.
- install_fake_terraform(): writes an executable Python script that behaves
  like the terraform CLI for `init` and `apply`, controlled through
  environment variables. Used to exercise SubprocessRunner end to end,
  including cancellation of a real child process.

Usage:
    runner = FakeProcessRunner()
    reconciler = Reconciler(runner=runner)
    await reconciler.create(ManagedUnitRecord(working_dir=str(tmp_path)))
    assert runner.phases() == [Phase.INIT, Phase.APPLY]
"""

from .executable import FakeTerraform, install_fake_terraform, process_exists, wait_until_gone
from .runner import FakeProcessRunner, RunCall, render_state

__all__ = [
    "FakeProcessRunner",
    "FakeTerraform",
    "RunCall",
    "install_fake_terraform",
    "process_exists",
    "render_state",
    "wait_until_gone",
]
