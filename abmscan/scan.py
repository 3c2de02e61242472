"""
扫描与重复实验模块 (Scan & Replicate Module)

本模块驱动多次独立的仿真运行，并把每次运行收集到的表合并为一个数据集。

运行架构：
=========
    ParamScanner (参数扫描)
        │
        ├── 组合 0: {a: 1, b: 3} → SimulationRunner → 表 + 参数列
        ├── 组合 1: {a: 2, b: 3} → SimulationRunner → 表 + 参数列
        └── ...
            ↓
        按展开顺序逐行拼接 → 扫描结果

    ReplicateRunner (重复实验)
        │
        ├── 重复 0: deepcopy(model) → SimulationRunner → 表
        ├── 重复 1: deepcopy(model) → SimulationRunner → 表
        └── ...
            ↓
        single_df=True:  按 step 外连接（列名加后缀 _1, _2, ...）
        single_df=False: 表的列表

    SimulationRunner (单次运行)
        │
        ├── 收集第0步（总是收集，用于建立表结构）
        ├── 推进第1步 → 若 1 在 when 中则收集
        ├── ...
        └── 推进第n步 → 若 n 在 when 中则收集

模块类：
=======
- SimulationRunner: 执行单次运行，返回一张表
- ParamScanner: 参数扫描，支持错误记录、取消和多进程
- ReplicateRunner: 同一模型的多次独立重复

函数形式：
=========
- run_collect(): 单次运行
- paramscan(): 参数扫描
- series_replicates(): 重复实验
- add_params(): 给表追加参数列

作者: SuZX
日期: 2024
"""

import copy
import inspect
import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pandas as pd
from tqdm import tqdm

from abmscan.collector import CollectionSpec, DataAccumulator
from abmscan.config import ReplicateConfig, ScanConfig
from abmscan.errors import ConfigurationError, JoinKeyMismatch, ScanAborted, SchemaMismatch
from abmscan.model import dummystep, step_model
from abmscan.parameters import ParameterItems, ParameterSpace

logger = logging.getLogger(__name__)


# =============================================================================
# 单次运行
# =============================================================================


class SimulationRunner:
    """
    单次运行器

    推进模型 n 步，在第0步以及 when 中的每一步收集数据。

    Attributes:
        model: 被推进的模型（会被原地修改）
        agent_step: Agent更新函数
        model_step: 模型更新函数
        spec: 收集规格
        n: 步数
        when: 需要记录的步编号（None表示每一步）
        stepper: 推进一步的操作，签名为 stepper(model, agent_step, model_step)

    Example:
        >>> runner = SimulationRunner(model, wealth_agent_step, {"wealth": [np.mean]}, n=10)
        >>> df = runner.run()
        >>> len(df)
        11
    """

    def __init__(
        self,
        model,
        agent_step: Callable,
        spec: CollectionSpec,
        n: int,
        when: Optional[Iterable[int]] = None,
        model_step: Callable = dummystep,
        stepper: Callable = step_model,
    ):
        self.model = model
        self.agent_step = agent_step
        self.model_step = model_step
        self.spec = spec
        self.n = n
        self.when = None if when is None else frozenset(when)
        self.stepper = stepper

    def run(self, cancel_event=None) -> pd.DataFrame:
        """
        执行运行

        Args:
            cancel_event: 可选的 threading.Event，每步之前检查

        Returns:
            本次运行收集到的表

        Raises:
            ScanAborted: cancel_event 被设置（partial 为本次已收集的部分）
        """
        accumulator = DataAccumulator(self.spec)

        # 第0步总是收集，与 when 无关
        accumulator.collect(self.model, 0)

        for step in range(1, self.n + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise ScanAborted(accumulator.to_frame(), completed=0)

            self.stepper(self.model, self.agent_step, self.model_step)

            if self.when is None or step in self.when:
                accumulator.collect(self.model, step)

        return accumulator.to_frame()


def run_collect(
    model,
    agent_step: Callable,
    spec: CollectionSpec,
    n: int,
    when: Optional[Iterable[int]] = None,
    model_step: Callable = dummystep,
    stepper: Callable = step_model,
) -> pd.DataFrame:
    """单次运行的函数形式，返回收集到的表"""
    return SimulationRunner(model, agent_step, spec, n, when, model_step, stepper).run()


# =============================================================================
# 参数列
# =============================================================================


def add_params(df: pd.DataFrame, params: Dict[str, Any], changing_params: Iterable[str]) -> pd.DataFrame:
    """
    为每个变化的参数追加一列，每行都是该组合的取值

    Args:
        df: 单个组合的结果表（原地修改）
        params: 参数组合
        changing_params: 需要追加的参数名（按声明顺序）

    Raises:
        SchemaMismatch: 参数名与已有列重名
    """
    changing_params = list(changing_params)
    clashes = [name for name in changing_params if name in df.columns]
    if clashes:
        raise SchemaMismatch(df.columns, list(df.columns) + changing_params)

    nrows = len(df)
    for name in changing_params:
        df[name] = [params[name]] * nrows
    return df


def _check_initializer(initialize: Callable, combination: Dict[str, Any]) -> None:
    """检查初始化函数能否接受该组合的全部关键字参数"""
    try:
        signature = inspect.signature(initialize)
    except (TypeError, ValueError):
        # 无法获取签名的内置函数等，交给实际调用
        return
    try:
        signature.bind(**combination)
    except TypeError as exc:
        raise ConfigurationError(
            f"Initializer {getattr(initialize, '__name__', initialize)!r} rejects "
            f"parameters {sorted(combination)}: {exc}",
            combination=combination,
        ) from exc


def _run_combination(
    combination: Dict[str, Any],
    varying: List[str],
    initialize: Callable,
    agent_step: Callable,
    model_step: Callable,
    stepper: Callable,
    spec: CollectionSpec,
    n: int,
    when: Optional[Iterable[int]],
    cancel_event=None,
) -> pd.DataFrame:
    """运行一个参数组合并追加参数列（模块级函数，可被进程池调用）"""
    _check_initializer(initialize, combination)
    model = initialize(**combination)
    runner = SimulationRunner(model, agent_step, spec, n, when, model_step, stepper)
    table = runner.run(cancel_event=cancel_event)
    return add_params(table, combination, varying)


def _concat(tables: List[pd.DataFrame]) -> pd.DataFrame:
    if not tables:
        return pd.DataFrame()
    return pd.concat(tables, ignore_index=True)


# =============================================================================
# 参数扫描
# =============================================================================

@dataclass
class ScanFailure:
    """
    失败的参数组合记录（on_error="continue" 时使用）

    Attributes:
        index: 组合在展开顺序中的位置
        combination: 参数组合
        error: 抛出的异常
    """

    index: int
    combination: Dict[str, Any]
    error: Exception


class ParamScanner:
    """
    参数扫描器

    对参数空间的每个组合运行一次仿真，给每张结果表追加变化参数的列，
    最后按展开顺序逐行拼接（第一个组合的行在最前）。

    扫描流程：
    =========
    1. 展开参数空间为有序组合列表
    2. 确定变化参数（列表取值的参数；include_constants 时为全部参数）
    3. 对每个组合：initialize(**组合) → 运行 n 步 → 追加参数列
    4. 拼接所有表

    错误策略：
    =========
    - on_error="raise"（默认）：第一个失败的组合中止整个扫描
    - on_error="continue"：失败记录在 failures 中，其余组合照常运行

    取消：
    =====
    cancel_event 被设置或收到 KeyboardInterrupt 时抛出 ScanAborted，
    其 partial 属性包含所有已完成组合的拼接结果。

    Attributes:
        space: 参数空间
        config: 扫描配置
        combinations: 展开后的组合列表
        varying: 需要写入结果的参数名
        tables: 已完成组合的结果表（按展开顺序）
        failures: 失败的组合

    Example:
        >>> scanner = ParamScanner(
        ...     {"num_agents": [10, 20], "width": 5},
        ...     wealth_model,
        ...     agent_step=wealth_agent_step,
        ...     properties={"wealth": [np.mean]},
        ...     config=ScanConfig(n=5),
        ... )
        >>> df = scanner.run()
        >>> sorted(df["num_agents"].unique())
        [10, 20]
    """

    def __init__(
        self,
        parameters: ParameterItems,
        initialize: Callable,
        agent_step: Callable,
        properties: CollectionSpec,
        config: Optional[ScanConfig] = None,
        model_step: Callable = dummystep,
        stepper: Callable = step_model,
    ):
        self.space = ParameterSpace(parameters)
        self.initialize = initialize
        self.agent_step = agent_step
        self.model_step = model_step
        self.stepper = stepper
        self.properties = properties
        self.config = config if config is not None else ScanConfig()

        self.combinations = self.space.expand()
        self.varying = self.space.varying(self.config.include_constants)

        self.tables: List[pd.DataFrame] = []
        self.failures: List[ScanFailure] = []

    def _task_args(self, combination: Dict[str, Any]) -> tuple:
        return (
            combination,
            self.varying,
            self.initialize,
            self.agent_step,
            self.model_step,
            self.stepper,
            self.properties,
            self.config.n,
            self.config.when,
        )

    def _record_failure(self, index: int, combination: Dict[str, Any], exc: Exception) -> None:
        self.failures.append(ScanFailure(index, combination, exc))
        logger.warning("Combination %d %s failed: %s", index, combination, exc)

    def run(self, cancel_event=None) -> pd.DataFrame:
        """
        执行扫描

        Args:
            cancel_event: 可选的 threading.Event

        Returns:
            拼接后的扫描结果

        Raises:
            ConfigurationError: 初始化函数不接受某个组合（on_error="raise"）
            ScanAborted: 扫描被取消
        """
        self.tables = []
        self.failures = []

        logger.info(
            "Parameter scan: %d combination(s), varying %s, n=%d",
            len(self.combinations), self.varying, self.config.n,
        )
        start_time = time.time()

        if self.config.n_workers > 1 and len(self.combinations) > 1:
            self._run_parallel(cancel_event)
        else:
            self._run_sequential(cancel_event)

        result = _concat(self.tables)
        logger.info(
            "Parameter scan finished: %d row(s), %d failure(s), %.1fs",
            len(result), len(self.failures), time.time() - start_time,
        )
        return result

    def _run_sequential(self, cancel_event) -> None:
        iterator = enumerate(self.combinations)
        if self.config.progress_bar:
            iterator = tqdm(iterator, total=len(self.combinations), desc="Scan")

        for index, combination in iterator:
            if cancel_event is not None and cancel_event.is_set():
                raise ScanAborted(_concat(self.tables), completed=len(self.tables))
            try:
                table = _run_combination(*self._task_args(combination), cancel_event=cancel_event)
            except (ScanAborted, KeyboardInterrupt):
                # 丢弃未完成的组合，保留已完成的
                raise ScanAborted(_concat(self.tables), completed=len(self.tables)) from None
            except Exception as exc:
                if self.config.on_error == "raise":
                    raise
                self._record_failure(index, combination, exc)
                continue
            self.tables.append(table)

    def _run_parallel(self, cancel_event) -> None:
        results: Dict[int, pd.DataFrame] = {}

        def completed_tables() -> List[pd.DataFrame]:
            return [results[i] for i in sorted(results)]

        pbar = tqdm(total=len(self.combinations), desc="Scan") if self.config.progress_bar else None
        with ProcessPoolExecutor(max_workers=self.config.n_workers) as executor:
            futures = {
                executor.submit(_run_combination, *self._task_args(combination)): index
                for index, combination in enumerate(self.combinations)
            }
            try:
                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as exc:
                        if self.config.on_error == "raise":
                            for pending in futures:
                                pending.cancel()
                            raise
                        self._record_failure(index, self.combinations[index], exc)
                    if pbar is not None:
                        pbar.update(1)
                    if cancel_event is not None and cancel_event.is_set():
                        for pending in futures:
                            pending.cancel()
                        raise ScanAborted(_concat(completed_tables()), completed=len(results))
            except KeyboardInterrupt:
                for pending in futures:
                    pending.cancel()
                raise ScanAborted(_concat(completed_tables()), completed=len(results)) from None
            finally:
                if pbar is not None:
                    pbar.close()

        self.failures.sort(key=lambda failure: failure.index)
        self.tables = completed_tables()


def paramscan(
    parameters: ParameterItems,
    initialize: Callable,
    *,
    agent_step: Callable,
    properties: CollectionSpec,
    n: int,
    when: Optional[Iterable[int]] = None,
    model_step: Callable = dummystep,
    include_constants: bool = False,
    on_error: str = "raise",
    n_workers: int = 1,
    progress_bar: bool = False,
    cancel_event=None,
    stepper: Callable = step_model,
) -> pd.DataFrame:
    """
    参数扫描的函数形式

    Args:
        parameters: 参数空间（dict 或 (名称, 取值) 对的序列），
            列表取值的参数会被扫描
        initialize: 模型初始化函数，接受关键字参数，返回新模型
        agent_step: Agent更新函数
        properties: 收集规格
        n: 每次运行的步数
        when: 需要记录的步编号（默认每一步）
        model_step: 模型更新函数
        include_constants: 是否把固定参数也写成结果列
        on_error: "raise" 或 "continue"（失败只记录日志，
            需要失败列表时请直接使用 ParamScanner）
        n_workers: 并行进程数
        progress_bar: 是否显示进度条
        cancel_event: 可选的 threading.Event
        stepper: 推进一步的操作

    Returns:
        拼接后的扫描结果
    """
    config = ScanConfig(
        n=n,
        when=when,
        include_constants=include_constants,
        on_error=on_error,
        n_workers=n_workers,
        progress_bar=progress_bar,
    )
    scanner = ParamScanner(
        parameters,
        initialize,
        agent_step=agent_step,
        properties=properties,
        config=config,
        model_step=model_step,
        stepper=stepper,
    )
    return scanner.run(cancel_event=cancel_event)


# =============================================================================
# 重复实验
# =============================================================================


def merge_replicates(tables: List[pd.DataFrame], on: str = "step") -> pd.DataFrame:
    """
    按键列外连接多次重复的结果

    第一次重复保留原列名，第 r 次（r >= 1）的非键列加后缀 _r。

    Raises:
        JoinKeyMismatch: 某张表没有键列
        SchemaMismatch: 加后缀后的列名与已有列冲突
    """
    if not tables:
        return pd.DataFrame()

    for r, table in enumerate(tables):
        if on not in table.columns:
            raise JoinKeyMismatch(on, side=f"replicate {r}")

    merged = tables[0]
    for r, table in enumerate(tables[1:], start=1):
        renamed = table.rename(columns={c: f"{c}_{r}" for c in table.columns if c != on})
        clashes = [c for c in renamed.columns if c != on and c in merged.columns]
        if clashes:
            raise SchemaMismatch(merged.columns, renamed.columns)
        merged = merged.merge(renamed, on=on, how="outer")
    return merged


class ReplicateRunner:
    """
    重复实验运行器

    对同一个初始模型运行多次独立仿真，每次都从初始模型的深拷贝开始，
    重复之间不共享任何可变状态（初始模型本身也不会被修改）。

    Note:
        深拷贝会复制模型中的随机数生成器状态。模型的随机性若来自
        自身的生成器，各次重复的结果将完全相同；需要不同的随机序列时，
        可通过 reseed 回调为每个副本设置新种子。

    Attributes:
        model: 初始模型
        config: 重复实验配置
        reseed: 可选回调 reseed(model_copy, replicate_index)
    """

    def __init__(
        self,
        model,
        agent_step: Callable,
        properties: CollectionSpec,
        config: Optional[ReplicateConfig] = None,
        model_step: Callable = dummystep,
        stepper: Callable = step_model,
        reseed: Optional[Callable[[Any, int], None]] = None,
    ):
        self.model = model
        self.agent_step = agent_step
        self.model_step = model_step
        self.stepper = stepper
        self.properties = properties
        self.config = config if config is not None else ReplicateConfig()
        self.reseed = reseed

    def run_one(self, replicate: int) -> pd.DataFrame:
        """运行一次重复"""
        model = copy.deepcopy(self.model)
        if self.reseed is not None:
            self.reseed(model, replicate)
        runner = SimulationRunner(
            model,
            self.agent_step,
            self.properties,
            self.config.n,
            self.config.when,
            self.model_step,
            self.stepper,
        )
        return runner.run()

    def run(self) -> Union[pd.DataFrame, List[pd.DataFrame]]:
        """
        执行全部重复

        Returns:
            single_df=True 时为合并后的一张表，否则为每次重复的表的列表
        """
        iterator = range(self.config.replicates)
        if self.config.progress_bar:
            iterator = tqdm(iterator, desc="Replicates")

        tables = [self.run_one(r) for r in iterator]
        logger.info("Finished %d replicate(s), n=%d", len(tables), self.config.n)

        if self.config.single_df:
            return merge_replicates(tables, on=self.config.on)
        return tables


def series_replicates(
    model,
    agent_step: Callable,
    model_step: Callable,
    properties: CollectionSpec,
    when: Optional[Iterable[int]],
    n: int,
    single_df: bool,
    replicates: int,
    on: str = "step",
) -> Union[pd.DataFrame, List[pd.DataFrame]]:
    """
    重复实验的函数形式

    Args:
        model: 初始模型（不会被修改）
        agent_step: Agent更新函数
        model_step: 模型更新函数
        properties: 收集规格
        when: 需要记录的步编号（None表示每一步）
        n: 步数
        single_df: 是否合并为一张表
        replicates: 重复次数
        on: 合并用的键列

    Returns:
        合并后的表，或每次重复的表的列表
    """
    config = ReplicateConfig(n=n, when=when, replicates=replicates, single_df=single_df, on=on)
    return ReplicateRunner(model, agent_step, properties, config, model_step=model_step).run()
