import argparse
import asyncio

from dotenv import load_dotenv
load_dotenv()

from party_rag.config import settings
from party_rag.core.log_config import configure_logging
from party_rag.db import init_db
from party_rag.embeddings.embedder import Embedder
from party_rag.ingestion.pipeline import IngestionProgress, PartyIngestionPipeline

STATUS_MARKERS = {
    "completed": "[done]",
    "processing": "[....]",
    "failed": "[FAIL]",
}


def print_progress(progress: list[IngestionProgress]) -> None:
    for p in progress:
        if p.status == "pending":
            continue
        marker = STATUS_MARKERS.get(p.status, "[wait]")
        if p.error:
            print(f"{marker} {p.party_short_name}: {p.error}")
        else:
            print(f"{marker} {p.party_short_name}: {p.message} ({p.progress}%)")


async def main(directory: str, status_only: bool) -> int:
    configure_logging()
    await init_db()
    pipeline = PartyIngestionPipeline(Embedder())
    failed = False

    if not status_only:
        print(f"Ingesting programmes from {directory}...")
        result = await pipeline.ingest_all(directory, print_progress)
        print(
            f"Processed {result.total_processed}, skipped {result.skipped}, "
            f"failed {len(result.failed)}."
        )
        for failure in result.failed:
            print(f"Failed: {failure.party} ({failure.step}): {failure.error}")
        failed = bool(result.failed)

    print("Current status:")
    for row in await pipeline.get_ingestion_status():
        print(
            f"  {row.party}: {row.status}, pages={row.total_pages}, "
            f"embeddings={row.total_embeddings}"
        )

    return 1 if failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest party programme PDFs.")
    parser.add_argument("directory", nargs="?", default=settings.programs_directory)
    parser.add_argument("--status", action="store_true", help="Only print ingestion status.")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.directory, args.status)))
