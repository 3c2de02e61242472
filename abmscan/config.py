"""
运行配置模块 (Run Configuration Module)

本模块定义参数扫描和重复实验的配置类以及预设配置函数。

类结构：
    ScanConfig: 参数扫描配置（步数、记录时刻、错误策略、并行度）
    ReplicateConfig: 重复实验配置（重复次数、输出形式、合并键）

预设配置函数：
    get_quick_scan_config(): 快速测试用扫描配置
    get_standard_scan_config(): 标准扫描配置
    get_quick_replicate_config(): 快速测试用重复实验配置

记录时刻说明：
    第0步的数据总是会被收集（用于建立表结构），与 when 无关。
    when 只决定第 1..n 步中哪些步需要记录；
    when=None 表示每一步都记录，此时每次运行得到 n+1 行。

作者: SuZX
日期: 2024
"""

# =============================================================================
# 导入依赖
# =============================================================================

from dataclasses import dataclass         # 数据类装饰器
from typing import Any, Dict, Iterable, Literal, Optional  # 类型提示


# 扫描中单个组合失败时的处理策略
ErrorPolicy = Literal["raise", "continue"]


def _normalize_when(when: Optional[Iterable[int]]) -> Optional[tuple]:
    """把记录时刻统一转换为有序、去重的元组（None保持不变）"""
    if when is None:
        return None
    return tuple(sorted({int(s) for s in when}))


# =============================================================================
# 参数扫描配置类
# =============================================================================

@dataclass
class ScanConfig:
    """
    参数扫描配置类

    控制 ParamScanner 对每个参数组合的运行方式。

    Attributes:
        n: 每次仿真推进的步数
        when: 需要记录数据的步编号集合（None表示每一步）
        include_constants: 是否把固定参数也作为列加入结果
        on_error: 某个组合失败时的策略
            - "raise": 立即中止整个扫描（默认）
            - "continue": 记录失败并继续其余组合
        n_workers: 并行进程数，1表示顺序执行
        progress_bar: 是否显示 tqdm 进度条

    Example:
        >>> config = ScanConfig(n=50, when=range(0, 51, 10))
        >>> config.steps_to_record()
        (0, 10, 20, 30, 40, 50)
    """

    # -------------------------------------------------------------------------
    # 运行长度
    # -------------------------------------------------------------------------

    # 每次仿真推进的步数
    n: int = 100

    # 记录时刻
    # 第0步总会被收集，不受该参数影响
    when: Optional[Iterable[int]] = None

    # -------------------------------------------------------------------------
    # 输出设置
    # -------------------------------------------------------------------------

    # 是否把固定（非列表）参数也写成结果列
    include_constants: bool = False

    # -------------------------------------------------------------------------
    # 执行策略
    # -------------------------------------------------------------------------

    # 组合失败时的处理策略
    on_error: ErrorPolicy = "raise"

    # 并行进程数
    # 大于1时使用进程池，initialize/agent_step等回调必须可被pickle
    n_workers: int = 1

    # 是否显示进度条
    progress_bar: bool = False

    def __post_init__(self) -> None:
        if self.n < 0:
            raise ValueError(f"n must be non-negative, got {self.n}")
        if self.on_error not in ("raise", "continue"):
            raise ValueError(f"Unknown on_error policy: {self.on_error!r}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be at least 1, got {self.n_workers}")
        self.when = _normalize_when(self.when)

    def steps_to_record(self) -> tuple:
        """
        返回需要记录的步编号（升序）

        when=None 时返回 0..n 全部步编号。
        """
        if self.when is None:
            return tuple(range(self.n + 1))
        return self.when

    def to_dict(self) -> Dict[str, Any]:
        """将配置转换为字典格式（用于日志记录）"""
        return {
            "n": self.n,
            "when": list(self.when) if self.when is not None else None,
            "include_constants": self.include_constants,
            "on_error": self.on_error,
            "n_workers": self.n_workers,
            "progress_bar": self.progress_bar,
        }


# =============================================================================
# 重复实验配置类
# =============================================================================

@dataclass
class ReplicateConfig:
    """
    重复实验配置类

    同一个初始模型的多次独立运行。每次运行都从初始模型的深拷贝开始。

    Attributes:
        n: 每次运行推进的步数
        when: 记录时刻（None表示每一步）
        replicates: 重复次数
        single_df: True 时把所有结果按 on 列外连接为一张表，
            False 时返回各次运行的表组成的列表
        on: 合并用的键列名
        progress_bar: 是否显示进度条
    """

    n: int = 100
    when: Optional[Iterable[int]] = None
    replicates: int = 10
    single_df: bool = True

    # 外连接的键列
    # 聚合模式的表以 step 为键
    on: str = "step"

    progress_bar: bool = False

    def __post_init__(self) -> None:
        if self.n < 0:
            raise ValueError(f"n must be non-negative, got {self.n}")
        if self.replicates < 1:
            raise ValueError(f"replicates must be at least 1, got {self.replicates}")
        self.when = _normalize_when(self.when)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n": self.n,
            "when": list(self.when) if self.when is not None else None,
            "replicates": self.replicates,
            "single_df": self.single_df,
            "on": self.on,
            "progress_bar": self.progress_bar,
        }


# =============================================================================
# 预设配置函数
# =============================================================================


def get_quick_scan_config() -> ScanConfig:
    """
    获取快速测试用扫描配置

    配置特点：
        - 步数: 10
        - 每一步都记录
        - 顺序执行，显示进度条
    """
    return ScanConfig(n=10, progress_bar=True)


def get_standard_scan_config() -> ScanConfig:
    """
    获取标准扫描配置

    配置特点：
        - 步数: 100
        - 每10步记录一次
        - 失败的组合被记录下来，不中止扫描
    """
    return ScanConfig(
        n=100,
        when=range(0, 101, 10),
        on_error="continue",
        progress_bar=True,
    )


def get_quick_replicate_config() -> ReplicateConfig:
    """获取快速测试用重复实验配置（10步，5次重复，合并为一张表）"""
    return ReplicateConfig(n=10, replicates=5, single_df=True, progress_bar=True)
