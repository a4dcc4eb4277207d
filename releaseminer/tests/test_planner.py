from pathlib import Path
from typing import List

from releaseminer.domain.models import (
    AssetRequest,
    BuildTarget,
    DispatchMode,
    MinerJob,
)
from releaseminer.domain.services.planner import Planner
from releaseminer.exceptions import PlanningContradiction


class StaticJob(MinerJob):
    def __init__(self, name, requests: List[AssetRequest], **kwargs):
        super().__init__(name, **kwargs)
        self.requests = requests

    def needs(self, build_target):
        if isinstance(self.requests, Exception):
            raise self.requests
        return self.requests

    def execute(self, build_target, scratch_dir, assets, paths, cancellation_token):
        pass


class TestPlanner:
    def setup_method(self):
        self.build_target = BuildTarget(
            version="2021.3.1f1",
            base_url="https://download.example.com/0a1b2c3d4e5f/",
        )
        self.planner = Planner(Path("/data/downloads"))

    def test_shared_assets_are_downloaded_once(self):
        first = StaticJob(
            "first",
            [
                AssetRequest(url="Windows64EditorInstaller/Editor.exe"),
                AssetRequest(url="LinuxEditorInstaller/Editor.tar.xz"),
            ],
        )
        second = StaticJob(
            "second",
            [
                AssetRequest(
                    url="https://download.example.com/0a1b2c3d4e5f/"
                    "LinuxEditorInstaller/Editor.tar.xz"
                )
            ],
            dispatch_mode=DispatchMode.INCREMENTAL,
        )

        plan = self.planner.plan(self.build_target, [first, second])

        assert [asset.url for asset in plan.assets] == [
            "https://download.example.com/0a1b2c3d4e5f/Windows64EditorInstaller/Editor.exe",
            "https://download.example.com/0a1b2c3d4e5f/LinuxEditorInstaller/Editor.tar.xz",
        ]
        assert [planned_job.needs for planned_job in plan.jobs] == [[0, 1], [1]]
        assert plan.jobs[1].dispatch_mode == DispatchMode.INCREMENTAL

    def test_assets_with_the_same_name_dont_collide(self):
        job = StaticJob(
            "job",
            [
                AssetRequest(url="Windows64EditorInstaller/Editor.exe"),
                AssetRequest(url="Windows32EditorInstaller/Editor.exe"),
            ],
        )

        plan = self.planner.plan(self.build_target, [job])

        first, second = plan.assets
        assert first.path != second.path
        assert first.path.parent == Path("/data/downloads")
        assert first.path.name.endswith("-Editor.exe")

    def test_jobs_without_needs_are_skipped(self):
        plan = self.planner.plan(
            self.build_target,
            [StaticJob("idle", []), StaticJob("busy", [AssetRequest(url="a.exe")])],
        )

        assert [planned_job.name for planned_job in plan.jobs] == ["busy"]
        assert len(plan.assets) == 1

    def test_contradiction_gives_no_plan(self):
        plan = self.planner.plan(
            self.build_target,
            [
                StaticJob("fine", [AssetRequest(url="a.exe")]),
                StaticJob("broken", PlanningContradiction("versions disagree")),
            ],
        )

        assert plan is None

    def test_conflicting_metadata_gives_no_plan(self):
        plan = self.planner.plan(
            self.build_target,
            [
                StaticJob(
                    "first", [AssetRequest(url="a.exe", metadata={"module": "a"})]
                ),
                StaticJob(
                    "second", [AssetRequest(url="a.exe", metadata={"module": "b"})]
                ),
            ],
        )

        assert plan is None

    def test_duplicate_requests_within_a_job(self):
        job = StaticJob("job", [AssetRequest(url="a.exe"), AssetRequest(url="a.exe")])

        plan = self.planner.plan(self.build_target, [job])

        assert plan.jobs[0].needs == [0]
