import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from drinkrank.core.engine import RankingEngine
from drinkrank.core.errors import RankingError
from drinkrank.core.export import export_user_rankings
from drinkrank.infra.config import ConfigManager
from drinkrank.utils.env_loader import load_project_env
from drinkrank.utils.logger import configure_root_logger, get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / 'configs' / 'default.yaml'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DrinkRank 个人饮品成对排名工具")
    parser.add_argument('--config', type=str, default=str(DEFAULT_CONFIG_PATH), help='YAML配置文件路径')
    subparsers = parser.add_subparsers(dest='command', required=True)

    add_item = subparsers.add_parser('add-item', help='登记饮品')
    add_item.add_argument('item_id')
    add_item.add_argument('name')
    add_item.add_argument('--category', default=None)

    init = subparsers.add_parser('init', help='将饮品加入个人排名')
    init.add_argument('user_id')
    init.add_argument('item_id')
    init.add_argument('tier', help='loved / liked / disliked')

    compare = subparsers.add_parser('compare', help='为饮品选择比较对手')
    compare.add_argument('user_id')
    compare.add_argument('item_id')
    compare.add_argument('tier')

    prefer = subparsers.add_parser('prefer', help='记录偏好结果')
    prefer.add_argument('user_id')
    prefer.add_argument('preferred_item_id')
    prefer.add_argument('rejected_item_id')
    prefer.add_argument('tier')

    show = subparsers.add_parser('show', help='显示个人排名')
    show.add_argument('user_id')

    score = subparsers.add_parser('score', help='显示饮品公共评分')
    score.add_argument('item_id')

    ledger = subparsers.add_parser('ledger', help='显示偏好记录')
    ledger.add_argument('user_id')

    export = subparsers.add_parser('export', help='导出个人排名为CSV')
    export.add_argument('user_id')
    export.add_argument('--output-dir', type=str, default=None)
    export.add_argument('--include-ledger', action='store_true')

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def run_command(engine: RankingEngine, args: argparse.Namespace) -> None:
    if args.command == 'add-item':
        item = engine.register_item(args.item_id, args.name, args.category)
        _print_json({'item_id': item.item_id, 'name': item.name, 'category': item.category})

    elif args.command == 'init':
        _print_json(engine.initialize_rating(args.user_id, args.item_id, args.tier))

    elif args.command == 'compare':
        _print_json(engine.get_comparison_opponent(args.user_id, args.item_id, args.tier))

    elif args.command == 'prefer':
        _print_json(engine.record_preference(
            args.user_id, args.preferred_item_id, args.rejected_item_id, args.tier
        ))

    elif args.command == 'show':
        ranked = engine.get_ranked_list(args.user_id)
        if not ranked:
            print(f"用户 {args.user_id} 尚未添加任何饮品")
            return
        current_tier = None
        for entry in ranked:
            if entry['tier'] != current_tier:
                current_tier = entry['tier']
                print(f"\n[{current_tier}]")
            label = entry['name'] or entry['item_id']
            print(f"  {entry['rank']:>3}. {label:<30s} {entry['rating']:4.1f} ({entry['comparisons']} 次比较)")

    elif args.command == 'score':
        score = engine.get_public_score(args.item_id)
        if score is None:
            print(f"饮品 {args.item_id} 暂无公共评分")
        else:
            _print_json(score)

    elif args.command == 'ledger':
        _print_json([record.to_response() for record in engine.ledger.list_records(user_id=args.user_id)])

    elif args.command == 'export':
        output_dir = Path(args.output_dir) if args.output_dir else None
        _print_json(export_user_rankings(engine, args.user_id, output_dir, args.include_ledger))


def main(argv: Optional[List[str]] = None) -> int:
    load_project_env()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config_manager = ConfigManager(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"配置加载失败: {e}", file=sys.stderr)
        return 2

    logging_settings = config_manager.get_logging_settings()
    configure_root_logger(
        level=logging_settings['level'],
        log_to_file=logging_settings['log_to_file'],
        log_to_console=logging_settings['log_to_console'],
        log_dir=logging_settings['log_dir'],
    )

    validation_errors = config_manager.validate_config()
    if validation_errors:
        logger.error("配置验证失败，发现以下问题：")
        for error in validation_errors:
            logger.error(f"  - {error}")
        return 2

    engine = RankingEngine.from_config(config_manager)
    try:
        run_command(engine, args)
    except RankingError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        if e.should_initialize:
            logger.error("提示: 请先使用 init 命令将饮品加入个人排名")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
