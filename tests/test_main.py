"""End-to-end tests for the CLI entrypoint and run()."""

import json

import pytest

from conftest import FakeDownloader, FakeInstaller, manifest_text
from integration_wizard import main as main_mod
from integration_wizard.lib.pkg import InstallStatus
from integration_wizard.manifest_editor import REGISTRIES_KEY
from integration_wizard.state_store import load_report

PLAY_REVIEW = "Play In-App Reviews 1.8.4"
FACEBOOK = "Facebook SDK 18.0.0"
CRASHLYTICS = "Firebase Crashlytics 13.4.0"


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(main_mod, "configure_logging", lambda **kw: kw["log_path"])


@pytest.fixture
def project(tmp_path):
    manifest = tmp_path / "Packages" / "manifest.json"
    manifest.parent.mkdir(parents=True)
    manifest.write_text(manifest_text({"dependencies": {"com.unity.ugui": "1.0.0"}}), encoding="utf-8")
    return tmp_path


def read_manifest(project):
    return json.loads((project / "Packages" / "manifest.json").read_text(encoding="utf-8"))


class TestRun:
    def test_registry_package_and_manual(self, project):
        installer = FakeInstaller()
        summary = main_mod.run(
            project=str(project),
            only=[PLAY_REVIEW, FACEBOOK],
            installer=installer,
            downloader=FakeDownloader(),
            sleep=lambda _: None,
        )
        assert installer.begun == ["com.google.play.review@1.8.4"]
        assert [r["name"] for r in read_manifest(project)[REGISTRIES_KEY]] == ["Google"]
        assert [t.label for t in summary.manual] == [FACEBOOK]

        report = load_report(str(project / "Logs" / "integration-wizard-report.json"))
        assert report["counts"] == {"succeeded": 1, "failed": 0, "manual": 1}
        assert "finished_at" in report

    def test_tarball_staged_into_project_cache(self, project, tmp_path):
        installer = FakeInstaller()
        downloader = FakeDownloader()
        report_path = tmp_path / "out" / "report.yaml"
        main_mod.run(
            project=str(project),
            only=[CRASHLYTICS],
            installer=installer,
            downloader=downloader,
            report_path=str(report_path),
            sleep=lambda _: None,
        )
        cached = project / "Library" / "IntegrationWizard" / "Cache" / "com.google.firebase.crashlytics-13.4.0.tgz"
        assert cached.exists()
        assert installer.begun == [f"file:{cached.absolute().as_posix()}"]
        assert load_report(str(report_path))["succeeded"][0]["label"] == CRASHLYTICS

    def test_failures_reported(self, project):
        installer = FakeInstaller({"com.google.play.review": InstallStatus.failed("No such package")})
        summary = main_mod.run(
            project=str(project),
            only=[PLAY_REVIEW],
            installer=installer,
            downloader=FakeDownloader(),
            sleep=lambda _: None,
        )
        assert not summary.ok
        assert summary.failed[0].error == "No such package"


class TestMain:
    def test_list(self, project, capsys):
        assert main_mod.main(["--project", str(project), "--list", "--skip", FACEBOOK]) == 0
        out = capsys.readouterr().out
        assert "[x] Adjust 5.4.4  (git)" in out
        assert f"[ ] {FACEBOOK}  (manual)" in out
        assert "(registry, package.openupm.com)" in out

    def test_registries_only(self, project, capsys):
        assert main_mod.main(["--project", str(project), "--registries-only"]) == 0
        regs = read_manifest(project)[REGISTRIES_KEY]
        assert sorted(r["name"] for r in regs) == ["Google", "package.openupm.com"]
        assert "Registries ensured." in capsys.readouterr().out

    def test_registries_only_malformed(self, project, capsys):
        (project / "Packages" / "manifest.json").write_text('{"scopedRegistries": 3}', encoding="utf-8")
        assert main_mod.main(["--project", str(project), "--registries-only"]) == 1
        assert (project / "Packages" / "manifest.json").read_text(encoding="utf-8") == '{"scopedRegistries": 3}'

    def test_registries_only_non_utf8(self, project, capsys):
        manifest = project / "Packages" / "manifest.json"
        manifest.write_bytes(b'{"dependencies": {"x": "caf\xe9"}}')
        assert main_mod.main(["--project", str(project), "--registries-only"]) == 1
        assert manifest.read_bytes() == b'{"dependencies": {"x": "caf\xe9"}}'
        assert "Registry update failed" in capsys.readouterr().out

    def test_missing_manifest(self, tmp_path, capsys):
        assert main_mod.main(["--project", str(tmp_path), "--only", "Adjust 5.4.4"]) == 2
        assert "Manifest not found" in capsys.readouterr().err

    def test_unknown_label(self, project, capsys):
        assert main_mod.main(["--project", str(project), "--only", "Nope"]) == 2
        assert "Unknown package label" in capsys.readouterr().err

    def test_nothing_selected(self, project, tmp_path, capsys):
        catalog = tmp_path / "empty.yaml"
        catalog.write_text("packages:\n  - {label: X, kind: git, ref: 'https://h/x.git', selected: false}\n", encoding="utf-8")
        assert main_mod.main(["--project", str(project), "--catalog", str(catalog)]) == 2
        assert "No packages selected" in capsys.readouterr().err

    def test_manual_only_run_prints_follow_ups(self, project, capsys):
        code = main_mod.main(["--project", str(project), "--only", FACEBOOK, "--installer-cmd", "true {identifier}"])
        out = capsys.readouterr().out
        assert code == 0
        assert "All done: 0 succeeded, 0 failed, 1 manual." in out
        assert "https://developers.facebook.com/docs/unity/" in out
