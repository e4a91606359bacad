"""
入口转发

本项目以可复用的包与 CLI 形式提供：
  - 包名: ble_indoor_locator
  - CLI: ble-indoor-locator

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `ble_indoor_locator.cli:main`。
"""

import sys

from ble_indoor_locator.cli import main as _cli_main


def main():
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
