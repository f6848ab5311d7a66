"""RunOrchestrator 单元测试"""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from nodeagent.core.config import Config
from nodeagent.core.exceptions import NoFunctionalServerError
from nodeagent.core.models import (
    CachedCatalogStatus,
    Catalog,
    NodeData,
    RunOptions,
)
from nodeagent.core.report import Report
from nodeagent.services.container import ServiceContainer
from nodeagent.services.orchestrator import (
    RunOrchestrator,
    should_pluginsync,
)
from nodeagent.utils.logger import AGENT_LOGGER, ReportLogHandler
from nodeagent.utils.net import ProbeResponse
from nodeagent.utils.shell import CommandResult


class FakePool:
    """探测结果按 host 预设的连接池"""

    def __init__(self, outcomes: dict[str, object] | None = None) -> None:
        self.outcomes = outcomes or {}
        self.probed: list[str] = []
        self.closed = False

    def client(self, host: str, port: int, *, timeout: float = 10.0):
        client = MagicMock()

        def get(path: str):
            self.probed.append(host)
            outcome = self.outcomes.get(host, ProbeResponse(200))
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        client.get.side_effect = get
        return client

    def close(self) -> None:
        self.closed = True


class Harness:
    """装配好 mock 协作方的编排器"""

    def __init__(self, tmp_path: Path, **cfg) -> None:
        settings = {
            "node_name": "n1",
            "lastrunfile": str(tmp_path / "last_run_summary.yaml"),
            "classfile": str(tmp_path / "classes.txt"),
            "resourcefile": str(tmp_path / "resources.txt"),
        }
        settings.update(cfg)
        self.config = Config(**settings)
        self.fresh: list[Catalog | None] = [Catalog(name="n1", environment="production")]
        self.cached: Catalog | None = None
        self.fresh_calls: list[dict] = []
        self.cache_calls: list[dict] = []

        self.catalog_source = MagicMock()
        self.catalog_source.supports_fact_upload = False
        self.catalog_source.find.side_effect = self._find
        self.node_source = MagicMock()
        self.node_source.find.return_value = NodeData(name="n1", environment="production")
        self.fact_source = MagicMock()
        self.fact_source.find.return_value = {"fqdn": "n1.example.com", "custom": "alias"}
        self.applier = MagicMock()
        self.plugin_syncer = MagicMock()
        self.report_store = MagicMock()
        self.executor = MagicMock()
        self.executor.execute.return_value = CommandResult(0, "", "")
        self.pool = FakePool()

        self.container = ServiceContainer(
            config=self.config,
            catalog_source=self.catalog_source,
            node_source=self.node_source,
            fact_source=self.fact_source,
            applier=self.applier,
            plugin_syncer=self.plugin_syncer,
            report_store=self.report_store,
            executor=self.executor,
            pool_factory=lambda: self.pool,
        )
        self.orchestrator = RunOrchestrator(self.container, transaction_uuid="t1")

    def _find(self, name: str, **options):
        if options.get("ignore_terminus"):
            self.cache_calls.append(options)
            return self.cached
        self.fresh_calls.append(options)
        if len(self.fresh) > 1:
            return self.fresh.pop(0)
        return self.fresh[0]

    def run(self, **options) -> tuple[int | None, Report]:
        report = Report(host="n1", environment=self.orchestrator.environment)
        result = self.orchestrator.run(RunOptions(report=report, **options))
        return result, report

    @property
    def dispatched(self) -> Report:
        self.report_store.save.assert_called_once()
        return self.report_store.save.call_args[0][0]


def _messages(report: Report, level: str | None = None) -> list[str]:
    return [e.message for e in report.logs if level is None or e.level == level]


# =========================================================================
# 正常流程
# =========================================================================


class TestHappyPath:
    def test_returns_exit_status(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        result, report = h.run()
        assert result == 0
        assert h.dispatched is report
        assert report.finalized
        h.applier.apply.assert_called_once()
        assert report.cached_catalog_status is CachedCatalogStatus.NOT_USED

    def test_uses_new_report_when_not_supplied(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert h.orchestrator.run() == 0
        assert h.dispatched.transaction_uuid == "t1"
        assert h.dispatched.host == "n1"

    def test_empty_hooks_not_executed(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.run()
        h.executor.execute.assert_not_called()

    def test_hooks_split_into_argv(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, prerun_command="/bin/pre 'a b'", postrun_command="/bin/post")
        h.run()
        argvs = [c.args[0] for c in h.executor.execute.call_args_list]
        assert argvs == [["/bin/pre", "a b"], ["/bin/post"]]

    def test_metrics_recorded(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        _, report = h.run()
        times = report.metrics["time"]
        assert times["total"] >= 0
        assert times["convert_catalog"] >= 0
        assert times["apply_catalog"] >= 0

    def test_last_run_summary_written(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.run()
        assert Path(h.config.lastrunfile).exists()

    def test_apply_receives_noop_and_options(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, noop=True)
        h.run(apply_options={"tags": ["web"]})
        kwargs = h.applier.apply.call_args.kwargs
        assert kwargs["noop"] is True
        assert kwargs["tags"] == ["web"]
        assert h.fresh_calls[0]["ignore_cache_save"] is True

    def test_node_name_fact_sets_host(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, node_name_fact="custom")
        _, report = h.run()
        assert report.host == "alias"

    def test_logs_captured_and_detached(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, prerun_command="/bin/pre")
        h.executor.execute.return_value = CommandResult(1, "", "nope")
        _, report = h.run()
        assert any("prerun_command" in m for m in _messages(report, "warning"))
        handlers = logging.getLogger(AGENT_LOGGER).handlers
        assert not any(isinstance(x, ReportLogHandler) for x in handlers)


# =========================================================================
# 钩子与应用失败
# =========================================================================


class TestHookFailures:
    def test_prerun_failure_skips_apply(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, prerun_command="/bin/pre", postrun_command="/bin/post")
        h.executor.execute.side_effect = [
            CommandResult(1, "", "boom"), CommandResult(0, "", ""),
        ]
        result, report = h.run()
        assert result is None
        h.applier.apply.assert_not_called()
        assert h.executor.execute.call_count == 2
        assert h.dispatched is report
        assert report.metrics["time"]["total"] >= 0

    def test_postrun_failure_returns_none(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, postrun_command="/bin/post")
        h.executor.execute.return_value = CommandResult(2, "", "")
        result, report = h.run()
        assert result is None
        h.applier.apply.assert_called_once()
        assert h.dispatched is report
        assert report.metrics["time"]["total"] >= 0

    def test_hook_launch_error(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, prerun_command="/missing")
        h.executor.execute.side_effect = FileNotFoundError("no such file")
        result, report = h.run()
        assert result is None
        assert h.dispatched is report

    def test_apply_exception_swallowed(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, postrun_command="/bin/post")
        h.applier.apply.side_effect = RuntimeError("engine crashed")
        result, report = h.run()
        assert result is None
        assert report.status == "failed"
        h.executor.execute.assert_called_once()
        assert h.dispatched is report

    def test_report_save_failure_does_not_mask_result(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.report_store.save.side_effect = OSError("disk full")
        result, _ = h.run()
        assert result == 0


# =========================================================================
# 目录获取
# =========================================================================


class TestCatalogRetrieval:
    def test_no_catalog(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, usecacheonfailure=False)
        h.fresh = [None]
        result, report = h.run()
        assert result is None
        assert any("无法获取目录" in m for m in _messages(report, "error"))
        h.applier.apply.assert_not_called()
        assert h.dispatched is report
        assert report.cached_catalog_status is CachedCatalogStatus.NOT_USED

    def test_failed_fallback_reports_not_used(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.fresh = [None]
        h.cached = Catalog(name="n1", environment="other")
        result, _ = h.run()
        assert result is None
        assert h.dispatched.to_dict()["cached_catalog_status"] == "not_used"

    def test_fallback_to_cache(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.fresh = [None]
        h.cached = Catalog(name="n1", environment="production", version="old")
        result, report = h.run()
        assert result == 0
        assert report.cached_catalog_status is CachedCatalogStatus.ON_FAILURE
        assert report.configuration_version == "old"

    def test_supplied_catalog(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, server_list="a,b")
        result, _ = h.run(catalog=Catalog(name="n1", environment="production"))
        assert result == 0
        h.catalog_source.find.assert_not_called()
        assert h.pool.probed == []

    def test_supplied_catalog_not_mutated(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        catalog = Catalog(
            name="n1", environment="production",
            resources=[{"type": "file", "title": "/a"}],
        )
        before = catalog.to_dict()
        h.run(catalog=catalog)
        assert catalog.to_dict() == before

    def test_node_lookup_failure_continues(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.node_source.find.side_effect = ConnectionError("down")
        result, _ = h.run()
        assert result == 0

    def test_node_lookup_options(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.run()
        kwargs = h.node_source.find.call_args.kwargs
        assert kwargs == {
            "transaction_uuid": "t1", "configured_environment": None,
            "server": "puppet", "server_port": 8140,
        }

    def test_node_environment_adopted(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.node_source.find.return_value = NodeData(name="n1", environment="staging")
        h.fresh = [Catalog(name="n1", environment="staging")]
        result, report = h.run()
        assert result == 0
        assert report.environment == "staging"
        assert h.fresh_calls[0]["environment"] == "staging"
        assert len(h.fresh_calls) == 1


class TestCacheOnly:
    def test_cache_hit(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, use_cached_catalog=True)
        h.cached = Catalog(name="n1", environment="production")
        result, report = h.run()
        assert result == 0
        assert report.cached_catalog_status is CachedCatalogStatus.EXPLICITLY_REQUESTED
        h.node_source.find.assert_not_called()
        h.plugin_syncer.sync.assert_not_called()
        assert h.fresh_calls == []

    def test_cache_hit_other_environment_used_as_is(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, use_cached_catalog=True)
        h.cached = Catalog(name="n1", environment="second_env")
        result, report = h.run()
        assert result == 0
        assert h.fresh_calls == []
        assert report.cached_catalog_status is CachedCatalogStatus.EXPLICITLY_REQUESTED

    def test_cache_miss(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, use_cached_catalog=True)
        result, report = h.run()
        assert result == 0
        h.plugin_syncer.sync.assert_called_once_with("production")
        h.node_source.find.assert_called_once()
        assert len(h.fresh_calls) == 1
        assert len(h.cache_calls) == 1
        assert report.cached_catalog_status is CachedCatalogStatus.NOT_USED

    def test_cache_miss_and_fetch_failure(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, use_cached_catalog=True)
        h.fresh = [None]
        result, _ = h.run()
        assert result is None
        assert len(h.cache_calls) == 1


class TestStrictEnvironment:
    def test_mismatch_not_applied(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, strict_environment_mode=True, environment="second_env")
        h.fresh = [Catalog(name="n1", environment="production")]
        result, report = h.run()
        assert result is None
        h.node_source.find.assert_not_called()
        h.applier.apply.assert_not_called()
        errors = _messages(report, "error")
        assert any("'production'" in m and "'second_env'" in m for m in errors)
        assert h.dispatched is report

    def test_match_applied(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, strict_environment_mode=True)
        result, _ = h.run()
        assert result == 0
        h.node_source.find.assert_not_called()

    def test_cached_mismatch_rejected(self, tmp_path: Path) -> None:
        h = Harness(
            tmp_path, strict_environment_mode=True, use_cached_catalog=True,
            environment="second_env",
        )
        h.cached = Catalog(name="n1", environment="production")
        result, _ = h.run()
        assert result is None
        assert h.fresh_calls == []
        h.applier.apply.assert_not_called()
        assert h.dispatched.cached_catalog_status is CachedCatalogStatus.NOT_USED


class TestEnvironmentReconciliation:
    def test_refetch_once_in_new_environment(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.fresh = [
            Catalog(name="n1", environment="second_env"),
            Catalog(name="n1", environment="second_env"),
        ]
        result, report = h.run()
        assert result == 0
        assert len(h.fresh_calls) == 2
        assert h.fresh_calls[1]["environment"] == "second_env"
        assert report.environment == "second_env"
        assert h.orchestrator.environment == "second_env"

    def test_unstable_environment_gives_up(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.fresh = [
            Catalog(name="n1", environment="env_a"),
            Catalog(name="n1", environment="env_b"),
            Catalog(name="n1", environment="env_c"),
        ]
        result, report = h.run()
        assert result is None
        assert len(h.fresh_calls) == 2
        h.applier.apply.assert_not_called()
        assert h.dispatched is report


# =========================================================================
# 插件同步
# =========================================================================


class TestPluginSync:
    def test_default_syncs(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.run()
        h.plugin_syncer.sync.assert_called_once_with("production")

    def test_option_disables(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.run(pluginsync=False)
        h.plugin_syncer.sync.assert_not_called()

    def test_failure_continues(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.plugin_syncer.sync.side_effect = RuntimeError("sync broke")
        result, _ = h.run()
        assert result == 0

    def test_should_pluginsync_defaults(self) -> None:
        assert should_pluginsync(Config()) is True
        assert should_pluginsync(Config(use_cached_catalog=True)) is False

    def test_should_pluginsync_explicit(self) -> None:
        cfg = Config(use_cached_catalog=True).with_overrides(pluginsync=True)
        assert should_pluginsync(cfg) is True
        cfg = Config().with_overrides(pluginsync=False)
        assert should_pluginsync(cfg) is False


# =========================================================================
# 服务端选择
# =========================================================================


class TestServerSelection:
    def test_master_used_and_context_restored(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, server_list="a,b:8141")
        h.pool.outcomes = {"a": TimeoutError("timed out"), "b": ProbeResponse(200)}
        seen: dict[str, object] = {}

        def apply(catalog, *, report, **options):
            ctx = h.orchestrator.context
            seen.update(server=ctx.server, port=ctx.server_port, pool=ctx.http_pool)

        h.applier.apply.side_effect = apply
        result, report = h.run()
        assert result == 0
        assert report.master_used == "b:8141"
        assert seen == {"server": "b", "port": 8141, "pool": h.pool}
        assert h.pool.probed == ["a", "b"]
        ctx = h.orchestrator.context
        assert (ctx.server, ctx.server_port, ctx.http_pool) == ("puppet", 8140, None)
        assert h.pool.closed

    def test_requests_target_selected_server(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, server_list="a:1,b:2")
        h.pool.outcomes = {"a": ConnectionRefusedError("refused")}
        result, report = h.run()
        assert result == 0
        assert report.master_used == "b:2"
        assert h.container.context is h.orchestrator.context
        assert (h.fresh_calls[0]["server"], h.fresh_calls[0]["server_port"]) == ("b", 2)
        node_kwargs = h.node_source.find.call_args.kwargs
        assert (node_kwargs["server"], node_kwargs["server_port"]) == ("b", 2)

    def test_no_functional_server(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, server_list="myserver:123,someotherservername")
        h.pool.outcomes = {
            "myserver": ConnectionRefusedError("refused"),
            "someotherservername": ProbeResponse(503),
        }
        with pytest.raises(NoFunctionalServerError, match="myserver:123,someotherservername"):
            h.run()
        h.catalog_source.find.assert_not_called()
        report = h.dispatched
        assert report.finalized
        assert report.metrics["time"]["total"] >= 0
        assert h.pool.closed

    def test_blank_server_list_skips(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, server_list="  ")
        h.run()
        assert h.pool.probed == []


# =========================================================================
# 目录转换
# =========================================================================


class TestConvertCatalog:
    def test_pure_and_timed(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        catalog = Catalog(
            name="n1", environment="production", classes=["base"],
            resources=[{"type": "File", "title": "/a"}],
        )
        before = catalog.to_dict()
        report = Report()
        applyable = h.orchestrator.steps.convert_catalog(catalog, 1.25, report)
        assert catalog.to_dict() == before
        assert applyable.finalized
        assert applyable.retrieval_duration == 1.25
        assert report.metrics["time"]["convert_catalog"] >= 0
        assert (tmp_path / "classes.txt").read_text() == "base\n"
        assert (tmp_path / "resources.txt").read_text() == "file[/a]\n"

    def test_write_failure_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture,
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        h = Harness(tmp_path, classfile=str(blocker / "classes.txt"))
        with caplog.at_level(logging.ERROR, logger="nodeagent"):
            applyable = h.orchestrator.steps.convert_catalog(
                Catalog(name="n1"), 0.0,
            )
        assert applyable.finalized
        assert "无法写入类文件" in caplog.text
