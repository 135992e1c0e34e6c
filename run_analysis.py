#!/usr/bin/env python3
"""
Batch Driver for Near-Repeat Crime Analysis
Runs the Knox near-repeat test and builds spatio-temporal interaction lines
for one crime type profile
"""

import sys
import os
import argparse
import logging
from datetime import datetime

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from config import ANALYSIS_PROFILES, FILE_PATTERNS, OUTPUT_DIR, ensure_directories
from src.data.preprocessing import IncidentPreprocessor
from near_repeat.knox import KnoxConfig, NearRepeatAnalyzer
from interaction.analysis import InteractionAnalyzer, InteractionConfig
from spacetime.events import EventStore
from spacetime.exceptions import NearRepeatError


def setup_logging(log_level=logging.INFO):
    """Setup logging configuration"""
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('analysis.log'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return logging.getLogger(__name__)


def load_events(input_path, profile, category=None, start=None, end=None):
    """Run the ingestion pipeline and return the validated event store"""
    logger = logging.getLogger(__name__)

    logger.info("Starting data preprocessing...")
    preprocessor = IncidentPreprocessor()
    events = preprocessor.process_incidents(
        input_path,
        category=category or ANALYSIS_PROFILES[profile]["category"],
        start=start,
        end=end
    )
    output_file = preprocessor.export_processed_data(events, profile=profile)
    logger.info(f"Processed events exported to: {output_file}")

    return EventStore(events)


def run_knox_step(store, profile, knox_params, n_jobs=None, timestamp=None):
    """Run the near-repeat significance test"""
    logger = logging.getLogger(__name__)

    logger.info("Starting Knox near-repeat test...")

    try:
        config = KnoxConfig.from_dict(knox_params)
        analyzer = NearRepeatAnalyzer(n_jobs=n_jobs)
        result = analyzer.run(store, config, name=profile)

        for cell in analyzer.summarize(result):
            logger.info(f"  {cell['distance']} m x {cell['time_lag']} days: "
                        f"observed={cell['observed']}, ratio={cell['knox_ratio']:.2f}, p={cell['p_value']:.3f}")

        analyzer.export_results(result)

        from app.utils.chart_utils import ChartVisualizer, save_knox_figure
        figure_path = OUTPUT_DIR / FILE_PATTERNS["knox_figure"].format(profile=profile, timestamp=timestamp)
        save_knox_figure(result, str(figure_path))
        logger.info(f"Knox figure saved to {figure_path}")

        chart_path = OUTPUT_DIR / FILE_PATTERNS["knox_chart"].format(profile=profile, timestamp=timestamp)
        ChartVisualizer().create_knox_ratio_chart(result).write_html(str(chart_path))
        logger.info(f"Knox ratio chart saved to {chart_path}")

        return True

    except NearRepeatError as e:
        logger.error(f"Knox test failed: {str(e)}")
        return False


def run_interaction_step(store, profile, interaction_params, timestamp=None):
    """Build clusters, interaction lines and size categories"""
    logger = logging.getLogger(__name__)

    logger.info("Starting spatio-temporal interaction analysis...")

    try:
        config = InteractionConfig.from_dict(interaction_params)
        analyzer = InteractionAnalyzer()
        result = analyzer.run(store, config, name=profile)

        logger.info(f"Category counts: {result.classification.class_counts()}")
        analyzer.export_lines(result)

        from app.utils.map_utils import MapVisualizer
        visualizer = MapVisualizer()
        map_path = OUTPUT_DIR / FILE_PATTERNS["interaction_map"].format(profile=profile, timestamp=timestamp)
        visualizer.export_map_to_html(visualizer.create_interaction_map(result.filter_categories()), str(map_path))
        logger.info(f"Interaction map saved to {map_path}")

        from app.utils.chart_utils import ChartVisualizer
        chart_path = OUTPUT_DIR / FILE_PATTERNS["cluster_chart"].format(profile=profile, timestamp=timestamp)
        ChartVisualizer().create_cluster_size_chart(
            result.cluster_summary(), result.classification.breaks.tolist()
        ).write_html(str(chart_path))
        logger.info(f"Cluster size chart saved to {chart_path}")

        return True

    except NearRepeatError as e:
        logger.error(f"Interaction analysis failed: {str(e)}")
        return False


def run_full_pipeline(args):
    """Run the complete analysis for one profile"""
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info(f"Starting Near-Repeat Analysis Pipeline ({args.profile})")
    logger.info("=" * 60)

    start_time = datetime.now()
    timestamp = start_time.strftime("%Y%m%d_%H%M%S")
    ensure_directories()

    profile = ANALYSIS_PROFILES[args.profile]
    knox_params = dict(profile["knox"])
    if args.iterations is not None:
        knox_params["iterations"] = args.iterations
    if args.seed is not None:
        knox_params["seed"] = args.seed

    # Step 1: Data preprocessing
    logger.info("\nStep 1: Data preprocessing...")
    try:
        store = load_events(args.input, args.profile, args.category, args.start, args.end)
    except NearRepeatError as e:
        logger.error(f"Data preprocessing failed: {str(e)}. Exiting.")
        return False
    logger.info(f"Loaded {len(store)} events")

    # Step 2: Knox test
    if not args.interaction_only:
        logger.info("\nStep 2: Knox near-repeat test...")
        if not run_knox_step(store, args.profile, knox_params, n_jobs=args.n_jobs, timestamp=timestamp):
            logger.error("Knox test failed. Exiting.")
            return False

    # Step 3: Interaction lines
    if not args.knox_only:
        logger.info("\nStep 3: Spatio-temporal interaction lines...")
        if not run_interaction_step(store, args.profile, profile["interaction"], timestamp=timestamp):
            logger.error("Interaction analysis failed. Exiting.")
            return False

    duration = datetime.now() - start_time

    logger.info("\n" + "=" * 60)
    logger.info("Pipeline completed successfully!")
    logger.info(f"Total duration: {duration}")
    logger.info("=" * 60)

    return True


def build_parser():
    parser = argparse.ArgumentParser(
        description="Near-repeat analysis and spatio-temporal interaction lines for crime incidents"
    )

    parser.add_argument(
        "--input",
        required=True,
        help="CSV file with geocoded incidents"
    )

    parser.add_argument(
        "--profile",
        choices=sorted(ANALYSIS_PROFILES),
        default="street_robbery",
        help="Crime type profile with analysis parameters"
    )

    parser.add_argument("--category", help="Override the profile's crime category")
    parser.add_argument("--start", help="First day of the study window (inclusive)")
    parser.add_argument("--end", help="Last day of the study window (inclusive)")
    parser.add_argument("--iterations", type=int, help="Monte Carlo iterations")
    parser.add_argument("--seed", type=int, help="Random seed for the Monte Carlo test")
    parser.add_argument("--n-jobs", type=int, default=None, help="Parallel Monte Carlo workers")

    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--knox-only",
        action="store_true",
        help="Only run the Knox near-repeat test"
    )
    group.add_argument(
        "--interaction-only",
        action="store_true",
        help="Only build the interaction lines"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


def main(argv=None):
    """Main function"""
    args = build_parser().parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logger = setup_logging(log_level)

    try:
        success = run_full_pipeline(args)

        if success:
            logger.info("Operation completed successfully!")
            sys.exit(0)
        else:
            logger.error("Operation failed!")
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Operation interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Unexpected error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
