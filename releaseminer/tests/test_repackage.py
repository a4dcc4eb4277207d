import threading
import zipfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from releaseminer.cancellation import CancellationToken
from releaseminer.domain.models import Asset, BuildTarget, DispatchMode
from releaseminer.exceptions import (
    ConfigurationError,
    JobFailure,
    PlanningContradiction,
)
from releaseminer.infra.extract import StagedExtractor
from releaseminer.infra.jobs import RepackageJob, SourceSpec
from releaseminer.infra.jobs.repackage import write_zip

WINDOWS_EDITOR = "Windows64EditorInstaller/Editor.exe"
LINUX_EDITOR = "LinuxEditorInstaller/Editor.tar.xz"


def make_target(windows_version="2021.3.1f1"):
    return BuildTarget.model_validate(
        {
            "version": "2021.3.1f1",
            "build_id": "0a1b2c3d4e5f",
            "base_url": "https://download.example.com/0a1b2c3d4e5f/",
            "platforms": {
                "windows": {
                    "version": windows_version,
                    "modules": {"editor": WINDOWS_EDITOR},
                },
                "linux": {"modules": {"editor": LINUX_EDITOR}},
            },
        }
    )


def fake_extractor(files):
    extractor = Mock(spec=StagedExtractor)

    def extract(archive_path, destination, patterns, flatten=True, **kwargs):
        for name, content in files.items():
            path = Path(destination) / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

    extractor.extract.side_effect = extract
    return extractor


class TestSourceSpec:
    def test_single_platform(self):
        assert SourceSpec(module="editor", platform="linux").platforms == ["linux"]


class TestRepackageJobNeeds:
    def test_batch_uses_first_available_platform(self, tmp_path):
        job = RepackageJob(
            name="managed",
            sources=[{"module": "editor", "platforms": ["mac", "windows", "linux"]}],
            patterns=["Editor/Data/Managed/*.dll"],
            output="{version}/managed.zip",
            output_dir=tmp_path,
        )

        requests = job.needs(make_target())

        assert [request.url for request in requests] == [WINDOWS_EDITOR]
        assert requests[0].metadata == {"platform": "windows", "module": "editor"}

    def test_batch_skipped_when_output_exists(self, tmp_path):
        (tmp_path / "2021.3.1f1").mkdir()
        (tmp_path / "2021.3.1f1" / "managed.zip").write_bytes(b"")
        job = RepackageJob(
            name="managed",
            sources=[{"module": "editor", "platform": "windows"}],
            patterns=["*"],
            output="{version}/managed.zip",
            output_dir=tmp_path,
        )

        assert job.needs(make_target()) == []

    def test_batch_skipped_when_a_source_is_missing(self, tmp_path):
        job = RepackageJob(
            name="managed",
            sources=[
                {"module": "editor", "platform": "windows"},
                {"module": "android", "platform": "windows"},
            ],
            patterns=["*"],
            output="managed.zip",
            output_dir=tmp_path,
        )

        assert job.needs(make_target()) == []

    def test_incremental_needs_every_platform(self, tmp_path):
        (tmp_path / "windows-editor.zip").write_bytes(b"")
        job = RepackageJob(
            name="editor",
            mode="incremental",
            sources=[{"module": "editor", "platforms": ["windows", "linux"]}],
            patterns=["*"],
            output="{platform}-{module}.zip",
            output_dir=tmp_path,
        )

        requests = job.needs(make_target())

        assert job.dispatch_mode == DispatchMode.INCREMENTAL
        assert [request.url for request in requests] == [LINUX_EDITOR]

    def test_version_mismatch_is_a_contradiction(self, tmp_path):
        job = RepackageJob(
            name="managed",
            sources=[{"module": "editor", "platform": "windows"}],
            patterns=["*"],
            output="managed.zip",
            output_dir=tmp_path,
        )

        with pytest.raises(PlanningContradiction):
            job.needs(make_target(windows_version="2021.3.2f1"))


class TestRepackageJobExecute:
    def _asset(self, tmp_path, platform="linux"):
        return Asset(
            index=0,
            url=f"https://download.example.com/{LINUX_EDITOR}",
            path=tmp_path / "Editor.tar.xz",
            metadata={"platform": platform, "module": "editor"},
        )

    def test_execute_writes_zip(self, tmp_path):
        extractor = fake_extractor(
            {"Editor/Data/il2cpp/libil2cpp/il2cpp-api.h": b"#pragma once"}
        )
        job = RepackageJob(
            name="libil2cpp",
            mode="incremental",
            sources=[{"module": "editor", "platform": "linux"}],
            patterns=["Editor/Data/il2cpp/libil2cpp/*"],
            root="Editor/Data/il2cpp",
            output="{version}/{platform}-libil2cpp.zip",
            output_dir=tmp_path / "output",
            extractor=extractor,
        )
        asset = self._asset(tmp_path)
        scratch_dir = tmp_path / "scratch"
        scratch_dir.mkdir()

        job.execute(
            make_target(), scratch_dir, [asset], [asset.path], CancellationToken()
        )

        output_path = tmp_path / "output" / "2021.3.1f1" / "linux-libil2cpp.zip"
        with zipfile.ZipFile(output_path) as zf:
            assert "libil2cpp/il2cpp-api.h" in zf.namelist()
        assert [path.name for path in output_path.parent.iterdir()] == [
            "linux-libil2cpp.zip"
        ]

        extract_args = extractor.extract.call_args
        assert extract_args[0][0] == asset.path
        assert extract_args[0][1] == scratch_dir / "content"

    def test_empty_extraction_fails(self, tmp_path):
        job = RepackageJob(
            name="managed",
            sources=[{"module": "editor", "platform": "linux"}],
            patterns=["Editor/Data/Managed/*.dll"],
            output="managed.zip",
            output_dir=tmp_path / "output",
            extractor=fake_extractor({}),
        )
        asset = self._asset(tmp_path)
        scratch_dir = tmp_path / "scratch"
        scratch_dir.mkdir()

        with pytest.raises(JobFailure, match="empty"):
            job.execute(
                make_target(), scratch_dir, [asset], [asset.path], CancellationToken()
            )

        assert not (tmp_path / "output" / "managed.zip").exists()

    def test_incremental_writes_one_zip_per_module(self, tmp_path):
        target = BuildTarget.model_validate(
            {
                "version": "2021.3.1f1",
                "base_url": "https://download.example.com/",
                "platforms": {
                    "linux": {
                        "modules": {
                            "editor": LINUX_EDITOR,
                            "android": "LinuxEditorTargetInstaller/Android.tar.xz",
                        }
                    }
                },
            }
        )
        job = RepackageJob(
            name="headers",
            mode="incremental",
            sources=[
                {"module": "editor", "platform": "linux"},
                {"module": "android", "platform": "linux"},
            ],
            patterns=["*"],
            output="{version}/{platform}-{module}.zip",
            output_dir=tmp_path / "output",
            extractor=fake_extractor({"include/api.h": b"#pragma once"}),
        )

        for index, request in enumerate(job.needs(target)):
            asset = Asset(
                index=index,
                url=request.url,
                path=tmp_path / f"archive-{index}",
                metadata=request.metadata,
            )
            scratch_dir = tmp_path / f"scratch-{index}"
            scratch_dir.mkdir()
            job.execute(target, scratch_dir, [asset], [asset.path], CancellationToken())

        assert sorted(
            path.name for path in (tmp_path / "output" / "2021.3.1f1").iterdir()
        ) == ["linux-android.zip", "linux-editor.zip"]


class TestRepackageJobOutput:
    def test_incremental_output_needs_platform(self, tmp_path):
        with pytest.raises(ConfigurationError, match="platform"):
            RepackageJob(
                name="editor",
                mode="incremental",
                sources=[{"module": "editor", "platforms": ["windows", "linux"]}],
                patterns=["*"],
                output="{version}/editor.zip",
                output_dir=tmp_path,
            )

    def test_incremental_output_needs_module_for_several_modules(self, tmp_path):
        with pytest.raises(ConfigurationError, match="module"):
            RepackageJob(
                name="headers",
                mode="incremental",
                sources=[
                    {"module": "editor", "platform": "linux"},
                    {"module": "android", "platform": "linux"},
                ],
                patterns=["*"],
                output="{version}-{platform}.zip",
                output_dir=tmp_path,
            )

    def test_batch_output_is_free_form(self, tmp_path):
        job = RepackageJob(
            name="managed",
            sources=[
                {"module": "editor", "platform": "linux"},
                {"module": "android", "platform": "linux"},
            ],
            patterns=["*"],
            output="managed.zip",
            output_dir=tmp_path,
        )

        assert job.dispatch_mode == DispatchMode.BATCH

    def test_concurrent_writers_do_not_share_partial_files(self, tmp_path):
        output_path = tmp_path / "output" / "editor.zip"
        barrier = threading.Barrier(4)
        errors = []

        def write(index):
            root_dir = tmp_path / f"root-{index}"
            root_dir.mkdir()
            (root_dir / "content.txt").write_bytes(b"x" * 100_000)
            barrier.wait()
            try:
                write_zip(root_dir, output_path)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        with zipfile.ZipFile(output_path) as zf:
            assert zf.namelist() == ["content.txt"]
            assert zf.read("content.txt") == b"x" * 100_000
        assert [path.name for path in output_path.parent.iterdir()] == ["editor.zip"]
