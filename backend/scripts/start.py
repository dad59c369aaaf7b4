#!/usr/bin/env python3
"""
多签自动转发系统启动脚本
========================

启动前依次检查: Python 版本 -> 依赖 -> 转发配置 -> TRON 节点与多签权限,
全部通过后用 uvicorn 启动 forwarder.main:app。

使用方式:
    python scripts/start.py              # 检查后启动
    python scripts/start.py --check      # 只检查，不启动
    python scripts/start.py --skip-ledger  # 跳过节点检查 (离线调试)
    python scripts/start.py --port 8080  # 指定端口
"""

import argparse
import asyncio
import importlib.util
import os
import sys
import warnings

# 忽略第三方库的 deprecation 警告
warnings.filterwarnings("ignore", category=DeprecationWarning)

# backend/ 加入 sys.path，保证能导入 forwarder
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

MIN_PYTHON = (3, 11)

# (import 名, PyPI 包名)
REQUIRED_PACKAGES = [
    ("fastapi", "fastapi"),
    ("uvicorn", "uvicorn"),
    ("httpx", "httpx"),
    ("pydantic_settings", "pydantic-settings"),
    ("orjson", "orjson"),
    ("tronpy", "tronpy"),
]


def report(label: str, ok: bool, detail: str = "") -> bool:
    """打印一行检查结果"""
    mark = "✓" if ok else "✗"
    print(f"[检查] {label:<12} {mark} {detail}".rstrip())
    return ok


def check_python() -> bool:
    version = ".".join(str(v) for v in sys.version_info[:3])
    ok = sys.version_info[:2] >= MIN_PYTHON
    need = "" if ok else f" (需要 >= {MIN_PYTHON[0]}.{MIN_PYTHON[1]})"
    return report("Python", ok, version + need)


def check_packages() -> bool:
    missing = [dist for module, dist in REQUIRED_PACKAGES if importlib.util.find_spec(module) is None]
    if missing:
        return report("依赖", False, f"缺少: pip install {' '.join(missing)}")
    return report("依赖", True, f"{len(REQUIRED_PACKAGES)} 个核心包已安装")


def load_config():
    """读取并校验 FORWARDER_* 配置，失败返回 None"""
    from forwarder.config import ForwardingConfig, get_settings
    from forwarder.exceptions import ConfigurationError

    try:
        config = ForwardingConfig.from_settings(get_settings())
    except ConfigurationError as e:
        report("配置", False, str(e))
        return None

    report("配置", True, f"{config.monitored_address} -> {config.destination_address}")
    return config


async def check_ledger(config) -> bool:
    """查询余额与 active 权限，确认节点可达"""
    from forwarder.clients import TronRestClient
    from forwarder.exceptions import LedgerError
    from forwarder_core.amounts import format_trx
    from forwarder_core.multisig import evaluate_multisig

    client = TronRestClient(config.ledger_endpoint, api_key=config.ledger_api_key)
    try:
        balance = await client.get_balance(config.monitored_address)
        permission = await client.get_account_permissions(config.monitored_address)
    except LedgerError as e:
        return report("TRON 节点", False, f"{config.ledger_endpoint}: {e}")
    finally:
        await client.close()

    report("TRON 节点", True, f"余额 {format_trx(balance)}")

    # 审批钱包启动后才连接，这里只看阈值和本地密钥
    status = evaluate_multisig(permission, config.monitored_address, None)
    if status.threshold >= 2 and status.has_local_key:
        print(f"        多签权限: 阈值 {status.threshold}, 密钥 {status.key_count} 个")
    else:
        print("        ! 多签未配置: 检测到的入账不会被转发")
    return True


def run_checks(skip_ledger: bool) -> bool:
    print("-" * 60)
    results = [check_python(), check_packages()]
    if all(results):
        config = load_config()
        results.append(config is not None)
        if config is not None and not skip_ledger:
            results.append(asyncio.run(check_ledger(config)))
    print("-" * 60)

    ok = all(results)
    print("✓ 所有检查通过!" if ok else "✗ 部分检查失败，请修复后重试")
    return ok


def serve(host: str, port: int) -> None:
    import uvicorn

    print(f"\n  控制台 API: http://{host}:{port}/docs")
    print(f"  WebSocket:  ws://{host}:{port}/ws\n")
    uvicorn.run("forwarder.main:app", host=host, port=port, log_level="warning")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="多签自动转发系统启动脚本")
    parser.add_argument("--check", action="store_true", help="只检查环境，不启动服务")
    parser.add_argument("--skip-ledger", action="store_true", help="跳过 TRON 节点检查")
    parser.add_argument("--host", default="0.0.0.0", help="监听地址 (默认: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="监听端口 (默认: 8000)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("   Multisig Auto-Forwarder  |  2-of-2 多签 TRX 自动转发")
    print("=" * 60)

    if not run_checks(args.skip_ledger):
        return 1
    if args.check:
        return 0

    serve(args.host, args.port)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n服务已停止。")
        sys.exit(0)
