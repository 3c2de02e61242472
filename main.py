#!/usr/bin/env python3
"""
abmscan 演示程序入口

ABM数据收集与参数扫描 - 基于财富交换示例模型的演示

本程序提供以下运行模式：
    1. 扫描模式 (scan): 对 Agent数量 × 初始财富 做参数扫描，按步聚合
    2. 原始模式 (raw): 单次运行，记录每个Agent每一步的财富并合并列
    3. 重复模式 (replicates): 同一模型的多次独立重复，按 step 合并

使用方法：
    # 扫描模式（默认）
    python main.py

    # 原始模式
    python main.py --mode raw --agents 20 --steps 5

    # 重复模式
    python main.py --mode replicates --replicates 5

    # 并行扫描
    python main.py --mode scan --workers 4

输出：
    结果表直接打印到终端（本项目不写入任何文件）

作者: SuZX
日期: 2024
"""

# =============================================================================
# 标准库导入
# =============================================================================
import argparse      # 命令行参数解析
import dataclasses   # 配置复制
import logging       # 运行日志

# =============================================================================
# 第三方库导入
# =============================================================================
import numpy as np               # 数值计算
import pandas as pd              # 数据处理

# =============================================================================
# 项目模块导入
# =============================================================================
from abmscan.aggregators import count, gini, maximum, mean
from abmscan.combine import combine_columns
from abmscan.config import ReplicateConfig, get_quick_scan_config
from abmscan.scan import ParamScanner, ReplicateRunner, run_collect
from abmscan.wealth import wealth_agent_step, wealth_model, wealth_model_step


# =============================================================================
# 收集规格
# =============================================================================

def model_gini(model) -> float:
    """读取模型级基尼系数（模块级函数，多进程扫描时可被pickle）"""
    return model.gini


# 聚合模式：财富的均值/中位数/基尼系数、历史均值的均值、Agent数量、模型基尼系数
AGGREGATION_SPEC = {
    "wealth": [np.mean, np.median, gini],
    "history": [np.mean],
    "agent": [count],
    "model": [("gini", model_gini)],
}

# 原始模式：每个Agent的财富与位置索引
RAW_FIELDS = ["wealth", "pos"]


def _print_table(title: str, df: pd.DataFrame, max_rows: int = 20) -> None:
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)
    with pd.option_context("display.max_columns", None, "display.width", 120):
        print(df.head(max_rows).to_string())
    if len(df) > max_rows:
        print(f"... ({len(df)} rows total)")


# =============================================================================
# 运行模式
# =============================================================================

def run_scan_mode(agents: int, steps: int, workers: int, seed: int) -> None:
    """扫描模式：Agent数量 × 初始财富"""
    config = dataclasses.replace(
        get_quick_scan_config(),
        n=steps,
        when=range(0, steps + 1, max(1, steps // 5)),
        n_workers=workers,
    )
    parameters = {
        "num_agents": [agents // 2, agents],
        "initial_wealth": [1, 3],
        "seed": seed,
    }

    print(f"[配置] 参数空间: {parameters}")
    print(f"[配置] 步数: {steps}, 记录时刻: {list(config.steps_to_record())}")

    scanner = ParamScanner(
        parameters,
        wealth_model,
        agent_step=wealth_agent_step,
        properties=AGGREGATION_SPEC,
        config=config,
        model_step=wealth_model_step,
    )
    df = scanner.run()
    _print_table(f"扫描结果 ({len(scanner.combinations)} 个组合)", df)


def run_raw_mode(agents: int, steps: int, seed: int) -> None:
    """原始模式：每个Agent每一步的财富，然后按步合并为均值/最大值列"""
    model = wealth_model(num_agents=agents, seed=seed)
    df = run_collect(model, wealth_agent_step, RAW_FIELDS, n=steps, model_step=wealth_model_step)
    combine_columns(df, "wealth", [mean, maximum])
    _print_table("原始数据（每个Agent一行）", df)


def run_replicates_mode(agents: int, steps: int, replicates: int, seed: int) -> None:
    """重复模式：每次重复使用不同的随机种子"""
    model = wealth_model(num_agents=agents, seed=seed)

    def reseed(model_copy, replicate):
        model_copy.rng = np.random.default_rng(seed + replicate)

    runner = ReplicateRunner(
        model,
        wealth_agent_step,
        {"wealth": [gini]},
        ReplicateConfig(n=steps, replicates=replicates, single_df=True, progress_bar=True),
        model_step=wealth_model_step,
        reseed=reseed,
    )
    df = runner.run()
    _print_table(f"重复实验 ({replicates} 次)", df)


# =============================================================================
# 命令行参数
# =============================================================================

def parse_arguments():
    """
    解析命令行参数

    Returns:
        解析后的参数对象
    """
    parser = argparse.ArgumentParser(
        description="abmscan: ABM数据收集与参数扫描演示",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  python main.py                              # 扫描模式
  python main.py --mode raw --agents 20       # 原始模式
  python main.py --mode replicates            # 重复模式
        """
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=["scan", "raw", "replicates"],
        default="scan",
        help="运行模式 (默认: scan)"
    )
    parser.add_argument("--agents", type=int, default=50, help="Agent数量")
    parser.add_argument("--steps", type=int, default=20, help="仿真步数")
    parser.add_argument("--replicates", type=int, default=5, help="重复次数 (replicates模式)")
    parser.add_argument("--workers", type=int, default=1, help="并行进程数 (scan模式)")
    parser.add_argument("--seed", type=int, default=42, help="随机种子")
    parser.add_argument("--verbose", action="store_true", help="输出调试日志")

    return parser.parse_args()


# =============================================================================
# 主函数
# =============================================================================

def main():
    """
    主函数入口

    根据命令行参数选择运行模式并执行。
    """
    args = parse_arguments()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 70)
    print(f"abmscan: 财富交换模型 - {args.mode} 模式")
    print("=" * 70)

    if args.mode == "scan":
        run_scan_mode(args.agents, args.steps, args.workers, args.seed)

    elif args.mode == "raw":
        run_raw_mode(args.agents, args.steps, args.seed)

    elif args.mode == "replicates":
        run_replicates_mode(args.agents, args.steps, args.replicates, args.seed)

    print("\n程序执行完毕！")


# =============================================================================
# 程序入口
# =============================================================================

if __name__ == "__main__":
    main()
