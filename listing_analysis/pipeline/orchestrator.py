"""
Pipeline orchestrator using LangGraph.

Runs the listing analysis end to end as a linear state graph:

    read_identifiers -> scrape_listings -> analyze_images -> synthesize_report
        -> send_email -> save_to_drive -> archive -> END

Every node returns a partial state update. Expected failures (a listing that
cannot be fetched, an image Rekognition rejects, an SMTP outage) are appended
to the run error log through the ``operator.add`` reducer and the run keeps
going; only an unexpected exception escaping a node aborts the run as a
PipelineError.

Features:
    - Stateful execution with LangGraph StateGraph
    - Injectable services for every external dependency
    - Per-node timing in ``step_timings``
    - Testing hooks for node mocking and single-step execution
"""

import asyncio
import operator
import time
from functools import wraps
from typing import Annotated, Any, Awaitable, Callable, Optional, Sequence, TypedDict

from langgraph.graph import END, StateGraph

from listing_analysis.analyzers.image_collector import ImageAnalysisCollector
from listing_analysis.analyzers.report_synthesizer import ReportGenerationError, ReportSynthesizer
from listing_analysis.config.settings import Settings, get_settings
from listing_analysis.models.schemas import (
    ImageAnalysisRecord,
    ParsedListing,
    PipelineRun,
    PipelineStage,
    RunError,
    clean_identifiers,
    utc_now,
)
from listing_analysis.parsers.listing_parser import ListingParser
from listing_analysis.scrapers.batch_scraper import BatchScraper
from listing_analysis.services.delivery_service import DeliveryError, DriveService, EmailService
from listing_analysis.services.firecrawl_service import FirecrawlService
from listing_analysis.services.llm_service import ClaudeService
from listing_analysis.services.rekognition_service import ImageDownloader, RekognitionService
from listing_analysis.services.sheets_service import SheetsError, SheetsService
from listing_analysis.utils.formatters import save_run_archive
from listing_analysis.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class PipelineStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    Models are stored serialized (``model_dump``) and the error log uses
    ``operator.add`` so nodes only ever return their new entries.
    """
    run_id: str
    started_at: str

    # Input
    identifiers: list[str]
    identifiers_override: list[str] | None

    # Step outputs
    listings: dict[str, dict]
    image_analyses: dict[str, dict]
    report: dict | None
    email_sent: bool
    drive_saved: bool
    archive_paths: dict[str, str]

    # Error log (append-only)
    errors: Annotated[list[dict], operator.add]

    # Metadata
    step_timings: dict  # Node name -> duration_ms
    completed_at: str | None


NODE_ORDER = (
    "read_identifiers",
    "scrape_listings",
    "analyze_images",
    "synthesize_report",
    "send_email",
    "save_to_drive",
    "archive",
)


# =============================================================================
# Error Classes
# =============================================================================

class PipelineError(Exception):
    """Raised when an unexpected exception aborts a run."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _error(stage: PipelineStage, message: str, identifier: Optional[str] = None) -> dict:
    return RunError(stage=stage, identifier=identifier, message=message).model_dump()


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def track_timing(func: Callable):
    """Decorator to track node execution timing."""
    @wraps(func)
    async def wrapper(self, state: PipelineStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.info(f"Starting node: {node_name}", run_id=state.get("run_id"))

        try:
            result = await func(self, state)
            duration_ms = int((time.time() - start_time) * 1000)

            step_timings = state.get("step_timings", {}).copy()
            step_timings[node_name] = duration_ms
            result["step_timings"] = step_timings

            logger.info(
                f"Completed node: {node_name}",
                run_id=state.get("run_id"),
                duration_ms=duration_ms,
            )
            return result

        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Node failed: {node_name}",
                run_id=state.get("run_id"),
                duration_ms=duration_ms,
                error=str(e),
            )
            raise

    return wrapper


# =============================================================================
# State Conversion
# =============================================================================

def _listings_from_state(state: PipelineStateDict) -> dict[str, ParsedListing]:
    return {
        identifier: ParsedListing.model_validate(data)
        for identifier, data in state.get("listings", {}).items()
    }


def _analyses_from_state(state: PipelineStateDict) -> dict[str, ImageAnalysisRecord]:
    return {
        identifier: ImageAnalysisRecord.model_validate(data)
        for identifier, data in state.get("image_analyses", {}).items()
    }


def state_to_run(state: PipelineStateDict) -> PipelineRun:
    """Build the PipelineRun snapshot for a (possibly partial) state."""
    payload: dict[str, Any] = {
        "identifiers": state.get("identifiers", []),
        "listings": state.get("listings", {}),
        "image_analyses": state.get("image_analyses", {}),
        "report": state.get("report"),
        "email_sent": state.get("email_sent", False),
        "drive_saved": state.get("drive_saved", False),
        "errors": state.get("errors", []),
        "step_timings": state.get("step_timings", {}),
        "completed_at": state.get("completed_at"),
    }
    if state.get("run_id"):
        payload["run_id"] = state["run_id"]
    if state.get("started_at"):
        payload["started_at"] = state["started_at"]
    return PipelineRun.model_validate(payload)


# =============================================================================
# Main Pipeline Class
# =============================================================================

class ListingAnalysisPipeline:
    """
    LangGraph-based pipeline for product listing analysis.

    Every collaborator can be injected; anything left out is built from
    settings when the pipeline is entered. Image analysis is skipped unless
    AWS credentials are configured, and email/Drive delivery are skipped
    unless their settings are present.

    Example:
        >>> async with ListingAnalysisPipeline() as pipeline:
        ...     run = await pipeline.run()
        ...     print(f"{run.success_count} listings, {len(run.errors)} errors")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sheets: Optional[SheetsService] = None,
        scraper: Optional[BatchScraper] = None,
        image_collector: Optional[ImageAnalysisCollector] = None,
        synthesizer: Optional[ReportSynthesizer] = None,
        email: Optional[EmailService] = None,
        drive: Optional[DriveService] = None,
        sleep: SleepFunc = asyncio.sleep,
        send_email: bool = True,
        save_to_drive: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings (uses defaults if not provided)
            sheets: Identifier sheet reader
            scraper: Batch scraper (built around FirecrawlService if omitted)
            image_collector: Image analysis collector (Rekognition if omitted)
            synthesizer: Report synthesizer (Claude if omitted)
            email: Email delivery
            drive: Drive delivery
            sleep: Pacing function shared by the default scraper and collector
            send_email: Disable to skip the email node
            save_to_drive: Disable to skip the Drive node
        """
        self.settings = settings or get_settings()
        self._sleep = sleep
        self.send_email_enabled = send_email
        self.save_to_drive_enabled = save_to_drive

        self._sheets = sheets
        self._scraper = scraper
        self._image_collector = image_collector
        self._synthesizer = synthesizer
        self._email = email
        self._drive = drive

        # Services created here are closed here
        self._firecrawl: Optional[FirecrawlService] = None
        self._downloader: Optional[ImageDownloader] = None
        self._llm_service: Optional[ClaudeService] = None
        self._initialized = False

        self._graph = self._build_graph()

        # Testing hooks
        self._mock_nodes: dict[str, Callable] = {}

    async def __aenter__(self):
        """Async context manager entry."""
        await self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _initialize_services(self) -> None:
        """Create every collaborator that was not injected."""
        if self._initialized:
            return

        if self._sheets is None:
            self._sheets = SheetsService(self.settings)

        if self._scraper is None:
            self._firecrawl = FirecrawlService(self.settings)
            await self._firecrawl.connect()
            self._scraper = BatchScraper(
                self._firecrawl,
                parser=ListingParser(),
                delay_seconds=self.settings.scrape_delay_seconds,
                sleep=self._sleep,
            )

        if self._image_collector is None and self.settings.has_aws_credentials():
            self._downloader = ImageDownloader(timeout=float(self.settings.request_timeout_seconds))
            await self._downloader.connect()
            self._image_collector = ImageAnalysisCollector(
                self._downloader,
                RekognitionService(self.settings),
                max_images=self.settings.max_images_per_listing,
                delay_seconds=self.settings.image_delay_seconds,
                sleep=self._sleep,
            )

        if self._synthesizer is None:
            self._llm_service = ClaudeService(self.settings)
            self._synthesizer = ReportSynthesizer(self._llm_service)

        if self._email is None:
            self._email = EmailService(self.settings)

        if self._drive is None:
            self._drive = DriveService(self.settings)

        self._initialized = True

    def _build_graph(self) -> StateGraph:
        """Build the linear LangGraph state machine."""
        graph = StateGraph(PipelineStateDict)

        graph.add_node("read_identifiers", self._read_identifiers_node)
        graph.add_node("scrape_listings", self._scrape_listings_node)
        graph.add_node("analyze_images", self._analyze_images_node)
        graph.add_node("synthesize_report", self._synthesize_report_node)
        graph.add_node("send_email", self._send_email_node)
        graph.add_node("save_to_drive", self._save_to_drive_node)
        graph.add_node("archive", self._archive_node)

        graph.set_entry_point(NODE_ORDER[0])
        for current, following in zip(NODE_ORDER, NODE_ORDER[1:]):
            graph.add_edge(current, following)
        graph.add_edge(NODE_ORDER[-1], END)

        return graph.compile()

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _read_identifiers_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """
        Node 1: Collect identifiers.

        Explicit identifiers replace the sheet read; either way the values
        are normalized, validated and deduplicated. A sheet failure is logged
        and the run continues with no identifiers.
        """
        override = state.get("identifiers_override")
        if override is not None:
            identifiers = clean_identifiers(override)
            logger.info("Using provided identifiers", provided=len(override), valid=len(identifiers))
            return {"identifiers": identifiers}

        try:
            if "read_identifiers" in self._mock_nodes:
                cells = await self._mock_nodes["read_identifiers"](state)
            else:
                cells = await self._sheets.read_column()
        except SheetsError as e:
            logger.error("Reading identifiers failed", error=str(e))
            return {
                "identifiers": [],
                "errors": [_error(PipelineStage.READ_IDENTIFIERS, str(e))],
            }

        identifiers = clean_identifiers(cells)
        logger.info("Identifiers loaded", rows=len(cells), valid=len(identifiers))
        return {"identifiers": identifiers}

    @track_timing
    async def _scrape_listings_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 2: Fetch and parse every identifier."""
        identifiers = state.get("identifiers", [])
        if not identifiers:
            logger.warning("No identifiers to scrape")
            return {"listings": {}}

        if "scrape_listings" in self._mock_nodes:
            result = await self._mock_nodes["scrape_listings"](state)
        else:
            result = await self._scraper.scrape(identifiers)

        return {
            "listings": {
                identifier: listing.model_dump()
                for identifier, listing in result.listings.items()
            },
            "errors": [error.model_dump() for error in result.errors],
        }

    @track_timing
    async def _analyze_images_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 3: Run image analysis for every scraped listing."""
        if "analyze_images" not in self._mock_nodes and self._image_collector is None:
            logger.info("Image analysis not configured, skipping")
            return {"image_analyses": {}}

        listings = _listings_from_state(state)
        if not listings:
            return {"image_analyses": {}}

        if "analyze_images" in self._mock_nodes:
            result = await self._mock_nodes["analyze_images"](state)
        else:
            result = await self._image_collector.collect(listings)

        logger.info("Image analysis complete", images=result.images_analyzed, errors=len(result.errors))
        return {
            "image_analyses": {
                identifier: record.model_dump()
                for identifier, record in result.analyses.items()
            },
            "errors": [error.model_dump() for error in result.errors],
        }

    @track_timing
    async def _synthesize_report_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 4: Generate the competitive report."""
        listings = _listings_from_state(state)
        if not listings:
            logger.warning("No listings scraped, skipping report")
            return {"report": None}

        try:
            if "synthesize_report" in self._mock_nodes:
                report = await self._mock_nodes["synthesize_report"](state)
            else:
                report = await self._synthesizer.synthesize(listings, _analyses_from_state(state))
        except ReportGenerationError as e:
            return {
                "report": None,
                "errors": [_error(PipelineStage.REPORT, str(e))],
            }

        return {"report": report.model_dump()}

    @track_timing
    async def _send_email_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 5: Email the report."""
        if not self.send_email_enabled:
            logger.info("Email disabled for this run")
            return {"email_sent": False}

        try:
            sent = await self._email.send_report(state_to_run(state))
        except DeliveryError as e:
            return {
                "email_sent": False,
                "errors": [_error(PipelineStage.EMAIL, str(e))],
            }
        return {"email_sent": sent}

    @track_timing
    async def _save_to_drive_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 6: Upload the run archive to Google Drive."""
        if not self.save_to_drive_enabled:
            logger.info("Drive upload disabled for this run")
            return {"drive_saved": False}

        try:
            metadata = await self._drive.upload_archive(state_to_run(state))
        except DeliveryError as e:
            return {
                "drive_saved": False,
                "errors": [_error(PipelineStage.DRIVE, str(e))],
            }
        return {"drive_saved": metadata is not None}

    @track_timing
    async def _archive_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 7: Write the JSON archive and Markdown report locally."""
        completed_at = utc_now().isoformat()
        run = state_to_run({**state, "completed_at": completed_at})

        try:
            paths = save_run_archive(run, self.settings.output_dir)
        except OSError as e:
            logger.error("Archive write failed", error=str(e))
            return {
                "completed_at": completed_at,
                "errors": [_error(PipelineStage.ARCHIVE, f"Archive write failed: {e}")],
            }

        return {
            "completed_at": completed_at,
            "archive_paths": {kind: str(path) for kind, path in paths.items()},
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def _initial_state(self, identifiers: Optional[Sequence[str]]) -> PipelineStateDict:
        run = PipelineRun()
        return {
            "run_id": run.run_id,
            "started_at": run.started_at.isoformat(),
            "identifiers": [],
            "identifiers_override": list(identifiers) if identifiers is not None else None,
            "listings": {},
            "image_analyses": {},
            "report": None,
            "email_sent": False,
            "drive_saved": False,
            "archive_paths": {},
            "errors": [],
            "step_timings": {},
            "completed_at": None,
        }

    async def run(self, identifiers: Optional[Sequence[str]] = None) -> PipelineRun:
        """
        Execute the complete pipeline.

        Args:
            identifiers: Use these instead of reading the sheet (still cleaned)

        Returns:
            PipelineRun with listings, image analyses, report and error log

        Raises:
            PipelineError: If an unexpected exception escaped a node
        """
        await self._initialize_services()

        initial_state = self._initial_state(identifiers)
        run_id = initial_state["run_id"]

        with LogContext(run_id=run_id):
            logger.info("Starting pipeline run")
            try:
                final_state = await self._graph.ainvoke(initial_state)
            except Exception as e:
                logger.error("Pipeline failed with unexpected error", error=str(e))
                raise PipelineError(
                    message=f"Unexpected pipeline error: {e}",
                    details={"run_id": run_id},
                ) from e

            run = state_to_run(final_state)
            logger.info(
                "Pipeline completed",
                identifiers=len(run.identifiers),
                listings=run.success_count,
                images=run.images_analyzed,
                errors=len(run.errors),
                duration_ms=sum(run.step_timings.values()),
            )
            return run

    async def run_step(
        self,
        step_name: str,
        state: PipelineStateDict,
    ) -> PipelineStateDict:
        """
        Execute a single pipeline step (for testing/debugging).

        Errors returned by the node are appended the way the graph reducer
        would append them.
        """
        node_methods = {
            "read_identifiers": self._read_identifiers_node,
            "scrape_listings": self._scrape_listings_node,
            "analyze_images": self._analyze_images_node,
            "synthesize_report": self._synthesize_report_node,
            "send_email": self._send_email_node,
            "save_to_drive": self._save_to_drive_node,
            "archive": self._archive_node,
        }

        if step_name not in node_methods:
            raise ValueError(f"Unknown step: {step_name}")

        await self._initialize_services()

        result = await node_methods[step_name](state)

        updated_state = {**state, **result}
        updated_state["errors"] = list(state.get("errors", [])) + list(result.get("errors", []))
        return updated_state

    # =========================================================================
    # Testing Hooks
    # =========================================================================

    def mock_node(self, node_name: str, mock_func: Callable) -> None:
        """
        Register a mock function for a node's external call (testing).

        Args:
            node_name: Name of the node to mock
            mock_func: Async function receiving the state
        """
        self._mock_nodes[node_name] = mock_func

    def clear_mocks(self) -> None:
        """Clear all registered mocks."""
        self._mock_nodes.clear()

    # =========================================================================
    # Usage
    # =========================================================================

    def get_usage_stats(self) -> dict[str, dict[str, Any]]:
        """
        Firecrawl credit and Claude token usage for the services this
        pipeline created. Injected collaborators are not counted.
        """
        stats: dict[str, dict[str, Any]] = {}
        if self._firecrawl:
            stats["firecrawl"] = self._firecrawl.get_stats()
        if self._llm_service:
            stats["claude"] = self._llm_service.get_usage_stats()
        return stats

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close the connections this pipeline opened."""
        try:
            if self._firecrawl:
                await self._firecrawl.disconnect()
            if self._downloader:
                await self._downloader.disconnect()
            if self._llm_service:
                await self._llm_service.close()
        except Exception as e:
            logger.warning(f"Error closing services: {e}")


# =============================================================================
# Convenience Functions
# =============================================================================

async def analyze_listings(
    identifiers: Optional[Sequence[str]] = None,
    settings: Optional[Settings] = None,
) -> PipelineRun:
    """
    Convenience function to run the whole pipeline.

    Example:
        >>> run = await analyze_listings(["B0CX23V2ZK", "B07XJ8C8F5"])
        >>> print(run.report.summary if run.report else "no report")
    """
    async with ListingAnalysisPipeline(settings=settings) as pipeline:
        return await pipeline.run(identifiers)
