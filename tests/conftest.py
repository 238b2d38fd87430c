import pytest
from unittest.mock import MagicMock, patch
from listing_analysis.models.schemas import (
    AnalysisReport,
    DetectedText,
    ImageAnalysis,
    ImageAnalysisRecord,
    ImageLabel,
    ImageRef,
    ImageRole,
    ModerationFlag,
    ParsedListing,
)

IMAGE_HOST = "https://m.media-amazon.com/images/I/"


@pytest.fixture
def mock_settings(tmp_path):
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.firecrawl_api_key.get_secret_value.return_value = "fc-test-key"
    settings.anthropic_api_key.get_secret_value.return_value = "sk-ant-api-mock-key"

    settings.claude_model = "claude-sonnet-4-20250514"
    settings.claude_max_tokens = 4000
    settings.analysis_temperature = 0.7
    settings.max_retries = 3
    settings.request_timeout_seconds = 60

    settings.scrape_delay_seconds = 2.0
    settings.image_delay_seconds = 0.3
    settings.max_images_per_listing = 5
    settings.label_min_confidence = 70.0
    settings.moderation_min_confidence = 60.0
    settings.max_labels = 10

    settings.google_sheet_id = "sheet-123"
    settings.google_sheet_range = "A:A"
    settings.google_credentials_path = None
    settings.google_drive_folder_id = None

    settings.aws_region = "us-east-1"
    settings.aws_profile = None
    settings.aws_access_key_id = None
    settings.aws_secret_access_key = None

    settings.gmail_user = "reports@example.com"
    settings.gmail_app_password.get_secret_value.return_value = "app-password"
    settings.smtp_host = "smtp.gmail.com"
    settings.smtp_port = 465

    settings.output_dir = tmp_path / "reports"
    settings.log_dir = tmp_path / "logs"
    settings.log_level = "INFO"
    settings.app_env = "test"

    settings.has_aws_credentials.return_value = False
    settings.sheets_configured.return_value = True
    settings.email_configured.return_value = False
    settings.drive_configured.return_value = False
    settings.recipients.return_value = ["reports@example.com"]

    return settings

@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Globally patch get_settings to return mock_settings."""
    with patch("listing_analysis.config.settings.get_settings", return_value=mock_settings):
        with patch("listing_analysis.pipeline.orchestrator.get_settings", return_value=mock_settings):
            with patch("listing_analysis.main.get_settings", return_value=mock_settings):
                yield mock_settings


# =============================================================================
# Page fixtures
# =============================================================================

@pytest.fixture
def sample_html():
    return f"""
<html><body>
<span id="productTitle" class="a-size-large">  Example Product &amp; Travel Case  </span>
<div id="imgTagWrapperId">
  <img id="landingImage" src="{IMAGE_HOST}81MainImg01L._AC_SX679_.jpg" alt="main">
</div>
<div id="altImages">
  <img src="{IMAGE_HOST}41SideImg02L._AC_US40_.jpg">
  <img src="{IMAGE_HOST}81MainImg01L._AC_US40_.jpg">
  <img src="{IMAGE_HOST}41BackImg03L._AC_US40_.jpg">
</div>
<div id="feature-bullets" class="a-section">
  <ul class="a-unordered-list">
    <li><span class="a-list-item"> Long-lasting battery provides up to 40 hours of playback </span></li>
    <li><span class="a-list-item">Short one</span></li>
    <li><span class="a-list-item">Water resistant <b>IPX7</b> design for the pool and the beach</span></li>
  </ul>
</div>
<div class="aplus-v2 desktop celwidget">
  <div class="aplus-module"><img src="{IMAGE_HOST}61AplusImg04L.jpg"></div>
</div>
<script src="{IMAGE_HOST}21ScriptBndL._RC|71a8+b.js,01c.js_.js"></script>
<script src="{IMAGE_HOST}31PlainScriptL.js"></script>
<link href="{IMAGE_HOST}11StyleSheetL._RC|01abc.css">
</body></html>
"""

@pytest.fixture
def sample_markdown():
    return f"""# Example Product & Travel Case With Extra Long Marketing Headline Text

4.7 out of 5 stars
2,347 ratings

$6.49

* This markdown bullet should not be used when the HTML path succeeds
* Customer Questions & Answers are not product bullets at all

## Product Description

A compact speaker built for travel.
Pairs with any phone in seconds.

![gallery]({IMAGE_HOST}51MarkdownOnly05L._AC_SL1000_.png)
"""

@pytest.fixture
def sample_listings():
    def make(identifier, title, price, images):
        return ParsedListing(
            identifier=identifier,
            title=title,
            price=price,
            rating=4.5,
            review_count=120,
            bullets=["Durable stainless steel body that lasts"],
            description="A great product",
            images=[
                ImageRef(
                    url=f"{IMAGE_HOST}{identifier}IMG{i}._AC_SL1500_.jpg",
                    role=ImageRole.MAIN if i == 1 else ImageRole.SECONDARY,
                    position=i,
                )
                for i in range(1, images + 1)
            ],
        )

    return {
        "B0CX23V2ZK": make("B0CX23V2ZK", "Insulated Water Bottle 32oz", 24.99, 3),
        "B07XJ8C8F5": make("B07XJ8C8F5", "Stainless Steel Tumbler 20oz", 19.99, 2),
    }

@pytest.fixture
def sample_image_analysis():
    return ImageAnalysis(
        url=f"{IMAGE_HOST}B0CX23V2ZKIMG1._AC_SL1500_.jpg",
        labels=[
            ImageLabel(name=name, confidence=95.0 - i)
            for i, name in enumerate(["Bottle", "Shaker", "Steel", "Cylinder", "Drink", "Jug"])
        ],
        detected_text=[
            DetectedText(text=text, confidence=99.0)
            for text in ["32 OZ", "BPA FREE", "LEAKPROOF", "DISHWASHER SAFE"]
        ],
        face_count=1,
        moderation_flags=[ModerationFlag(name="Suggestive", confidence=65.0)],
    )

@pytest.fixture
def sample_image_analyses(sample_image_analysis):
    return {
        "B0CX23V2ZK": ImageAnalysisRecord(identifier="B0CX23V2ZK", images=[sample_image_analysis]),
        "B07XJ8C8F5": ImageAnalysisRecord(identifier="B07XJ8C8F5", images=[]),
    }

@pytest.fixture
def sample_report_text():
    return """## Summary
Both listings compete in the insulated drinkware segment with similar pricing.

The bottle listing has stronger imagery than the tumbler.

## Competitive Insights
- B0CX23V2ZK prices 25% above B07XJ8C8F5 with the same rating
- Titles lead with material rather than capacity
* Short
1. Review counts are identical, so velocity is not a differentiator

## Recommendations
1. Move capacity to the first five words of both titles
2) Add a lifestyle image showing the bottle in use outdoors
- Test a $22.99 price point on B0CX23V2ZK for four weeks
• Rewrite bullet one of B07XJ8C8F5 around insulation hours

### Notes
Not a list line.

## Image Quality Analysis
Main images are clean with white backgrounds. One image was flagged as suggestive.
"""

@pytest.fixture
def sample_report():
    return AnalysisReport(
        summary="Both listings compete in the insulated drinkware segment.",
        competitive_insights=["B0CX23V2ZK prices 25% above B07XJ8C8F5"],
        recommendations=["Move capacity to the first five words of both titles"],
        image_quality_analysis="Main images are clean.",
    )

@pytest.fixture
def mock_logger():
    return MagicMock()
