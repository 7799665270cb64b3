#!/usr/bin/env python3
"""
Command Line Interface for the ID Card Scanner
Detect, rectify and enhance ID cards in photos
"""
import json
import sys
from pathlib import Path

import click

from card_detector import create_detector
from config import ensure_directories, settings
from main_processor import (BatchProcessor, CardProcessingPipeline, configure_logging,
                            save_processed_card)
from models import ProcessingOptions
from ocr_extractor import CardTextExtractor
from vision_backend import BACKENDS, BackendProvider


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def cli(verbose):
    """ID Card Scanner CLI

    Find an ID card in a photo, correct its perspective and prepare it for OCR.
    """
    configure_logging('DEBUG' if verbose else settings.LOG_LEVEL)


@cli.command()
@click.argument('image_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--method', '-m', type=click.Choice(['sobel', 'canny']), default=None,
              help='Quadrilateral detector to run first')
@click.option('--backend', '-b', type=click.Choice(sorted(BACKENDS)), default=None,
              help='Vision backend for resize, blur and Hough')
@click.option('--json', 'as_json', is_flag=True, help='Print the detection as JSON')
def detect(image_path, method, backend, as_json):
    """Detect the card corners in a photo"""
    provider = BackendProvider(backend)
    pipeline = CardProcessingPipeline(detector=create_detector(method, backend=provider), backend=provider)

    loaded = pipeline.load_image(image_path)
    if not loaded.ok:
        click.echo(f"❌ {loaded.error.user_message()}")
        sys.exit(1)

    detection = pipeline.detect_card(loaded.value)

    if as_json:
        click.echo(json.dumps(detection.to_dict(), indent=2, ensure_ascii=False))
        return

    status = "✅ Card found" if detection.success else "⚠️  No card found, using a centered guess"
    click.echo(status)
    click.echo(f"   • Method: {detection.method.description}")
    click.echo(f"   • Confidence: {detection.confidence:.1f}%")
    click.echo(f"   • Aspect ratio: {detection.detected_aspect_ratio:.3f}")
    for name, corner in zip(("TL", "TR", "BR", "BL"), detection.corners):
        click.echo(f"   • {name}: ({corner.x:.1f}, {corner.y:.1f})")


@cli.command()
@click.argument('image_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--output-dir', '-o', default=None, help='Directory for the output images')
@click.option('--no-crop', is_flag=True, help='Skip perspective correction and cropping')
@click.option('--no-enhance', is_flag=True, help='Skip sharpening and contrast')
@click.option('--no-threshold', is_flag=True, help='Skip the OCR threshold image')
@click.option('--ocr', is_flag=True, help='Run text extraction on the card')
def process(image_path, output_dir, no_crop, no_enhance, no_threshold, ocr):
    """Process one photo: detect, warp, enhance"""
    click.echo(f"🎯 Processing image: {image_path}")
    output_dir = output_dir or settings.OUTPUT_PATH
    ensure_directories(settings)

    options = ProcessingOptions(
        enable_crop=not no_crop,
        enable_enhancement=not no_enhance,
        enable_ocr_preprocessing=not no_threshold,
        enable_text_extraction=ocr,
    )
    pipeline = CardProcessingPipeline(text_extractor=CardTextExtractor() if ocr else None)
    result = pipeline.process_image(image_path, options)
    click.echo(result.summary())

    if not result.success:
        error = result.error
        message = error.user_message() if hasattr(error, 'user_message') else str(error)
        click.echo(f"❌ Processing failed: {message}")
        sys.exit(1)

    try:
        paths = save_processed_card(result.processed, output_dir, Path(image_path).stem)
    except Exception as e:
        click.echo(f"❌ Could not save output: {str(e)}")
        sys.exit(1)

    click.echo("\n📁 Outputs:")
    for kind, path in paths.items():
        click.echo(f"   • {kind}: {path}")

    if result.processed.fields:
        click.echo("\n📝 Fields:")
        for key, value in result.processed.fields.items():
            click.echo(f"   • {key}: {value}")


@cli.command()
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--output-dir', '-o', default=None, help='Directory for outputs and the CSV report')
def batch(directory, output_dir):
    """Process every photo in a directory"""
    click.echo(f"Processing directory: {directory}")
    output_dir = output_dir or settings.OUTPUT_PATH
    ensure_directories(settings)

    batch_processor = BatchProcessor(CardProcessingPipeline())
    rows = batch_processor.process_directory(directory, output_dir)
    if not rows:
        click.echo("No images found in directory")
        sys.exit(1)

    report = batch_processor.export_report(rows, str(Path(output_dir) / "batch_report.csv"))
    found = sum(1 for row in rows if row.get('card_found'))
    failed = sum(1 for row in rows if not row.get('success'))

    click.echo("Batch processing completed!")
    click.echo("📊 Results:")
    click.echo(f"   • Files processed: {len(rows)}")
    click.echo(f"   • Cards found: {found}")
    click.echo(f"   • Failures: {failed}")
    click.echo(f"   • Report: {report}")


@cli.command()
@click.argument('image_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--output-dir', '-o', default=None, help='Directory for debug images')
def debug(image_path, output_dir):
    """Save every intermediate detection image"""
    from debug_tool import DebugTool

    debug_tool = DebugTool()
    saved = debug_tool.debug_image(image_path, output_dir)
    if not saved:
        sys.exit(1)


@cli.command()
def config():
    """Show current configuration"""
    click.echo("⚙️  Current Configuration:")
    click.echo("\n📁 Paths:")
    click.echo(f"   • Output: {settings.OUTPUT_PATH}")
    click.echo(f"   • Debug: {settings.DEBUG_OUTPUT_PATH}")
    click.echo(f"   • Log file: {settings.LOG_FILE}")

    click.echo("\n🎯 Detection:")
    click.echo(f"   • Method: {settings.DETECTION_METHOD}")
    click.echo(f"   • Backend: {settings.VISION_BACKEND}")
    click.echo(f"   • Card aspect ratio: {settings.CARD_ASPECT_RATIO}")
    click.echo(f"   • Minimum confidence: {settings.CONFIDENCE_MIN_THRESHOLD}")

    click.echo("\n🔧 Output:")
    click.echo(f"   • Card width: {settings.OUTPUT_WIDTH}")
    click.echo(f"   • OCR engine: {settings.OCR_ENGINE} ({settings.OCR_LANGUAGE})")


if __name__ == '__main__':
    cli()
