"""
Prompt-based store generation.

The pipeline is an async generator that suspends at two review points:

    shell -> (print-on-demand) designs -> [design review] -> mockups
          -> products -> collections -> [product finalization] -> finalize

At a pause nothing runs in the background; the caller edits the artifact
and resumes, and the pipeline continues from that exact stage. Resuming
with the unedited artifact gives the same draft as running straight through.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .ai_service import DEFAULT_PRODUCT_PRICE, GenerationService
from .assets import is_data_uri, url_to_data_uri
from .config import DEFAULT_PLACEHOLDER_IMAGE_URL, log_and_status
from .data_mapper import map_generated_store
from .errors import StorefrontError, WizardStateError
from .models import Store

DEFAULT_PRODUCT_COUNT = 6


class GenerationStage(str, Enum):
    DESIGN_REVIEW = "design_review"
    PRODUCT_FINALIZATION = "product_finalization"


@dataclass
class GenerationPause:
    """Returned when the pipeline stops for review. ``artifact`` is what the user edits."""

    stage: GenerationStage
    artifact: Any
    progress: int
    message: str


@dataclass
class GenerationResult:
    store: Any
    progress: int = 100


FinalizeFn = Callable[[Store], Awaitable[Any]]


class GenerationOrchestrator:
    """
    Drives one generation at a time.

    Args:
        ai: GenerationService used for every AI call
        status_fn: Optional UI status callback (short messages)
        progress_fn: Optional callback ``(percent, message)``
        placeholder_url: Image used when a design or mockup cannot be produced
    """

    def __init__(self, ai: GenerationService, status_fn=None, progress_fn=None,
                 placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
        self.ai = ai
        self.status_fn = status_fn
        self.progress_fn = progress_fn
        self.placeholder_url = placeholder_url
        self.progress = 0
        self.status_text = ""
        self.paused: Optional[GenerationPause] = None
        self._run = None
        self._finalize_fn: Optional[FinalizeFn] = None
        self._awaiting_finalize = False

    @property
    def is_active(self) -> bool:
        return self._run is not None or self._awaiting_finalize

    async def start(self, prompt: str, options: Optional[Dict] = None, finalize: Optional[FinalizeFn] = None):
        """
        Begin a generation.

        Returns:
            GenerationPause at the first review point, or GenerationResult when
            ``options['auto_approve']`` skips the reviews
        """
        if self.is_active:
            raise WizardStateError("A store generation is already in progress",
                                   "Finish or cancel the current generation first.")
        if not (prompt or "").strip():
            raise StorefrontError("Empty generation prompt", "Please describe the store you want to create.")

        self._reset()
        self._finalize_fn = finalize
        self._run = self._pipeline(prompt.strip(), dict(options or {}))
        return await self._advance(None)

    async def resume(self, artifact=None):
        """
        Continue from the current pause with the (possibly edited) artifact.

        Passing None resumes with the artifact as it was yielded.
        """
        pause = self.paused
        if pause is None:
            raise WizardStateError("Generation is not paused", "There is nothing to resume.")

        value = pause.artifact if artifact is None else artifact
        self.paused = None
        if self._awaiting_finalize:
            return await self._finalize(self._coerce_draft(value))
        return await self._advance(value)

    async def cancel(self):
        """Discard the intermediate artifact and reset progress. Nothing has been persisted yet."""
        if self._run is not None:
            await self._run.aclose()
        self._reset()
        self._report(0, "Generation cancelled.", force=True)

    # ========================================
    # DRIVER
    # ========================================

    async def _advance(self, value):
        try:
            step = await self._run.asend(value)
        except Exception as e:
            await self._fail(e)
            raise

        if isinstance(step, GenerationPause):
            self.paused = step
            log_and_status(self.status_fn, f"Generation paused for {step.stage.value}", ui_msg=step.message)
            return step

        await self._run.aclose()
        self._run = None
        return await self._finalize(step)

    async def _finalize(self, draft: Store):
        self._awaiting_finalize = True
        if self._finalize_fn is None:
            result = draft
        else:
            try:
                result = await self._finalize_fn(draft)
            except StorefrontError as e:
                # Stay at product finalization so the user can fix the draft (e.g. rename) and retry
                self.paused = GenerationPause(GenerationStage.PRODUCT_FINALIZATION, draft, self.progress,
                                              e.user_message)
                log_and_status(self.status_fn, f"Finalizing generated store failed: {e}", "error",
                               ui_msg=e.user_message)
                raise

        self._awaiting_finalize = False
        self._finalize_fn = None
        self._report(100, "Store created.")
        return GenerationResult(store=result)

    async def _fail(self, error):
        if self._run is not None:
            await self._run.aclose()
        self._reset()
        self._report(0, "Generation failed.", force=True)
        log_and_status(self.status_fn, f"Store generation failed: {error}", "error",
                       ui_msg=getattr(error, "user_message", "Store generation failed."))

    def _reset(self):
        self._run = None
        self.paused = None
        self._awaiting_finalize = False
        self._finalize_fn = None
        self.progress = 0

    def _report(self, progress, message, force=False):
        """Progress never moves backwards except on cancel/failure (``force``)."""
        self.progress = progress if force else max(self.progress, progress)
        self.status_text = message
        logging.info(f"Generation progress {self.progress}%: {message}")
        if self.progress_fn is not None:
            try:
                self.progress_fn(self.progress, message)
            except Exception as e:
                logging.warning(f"progress_fn raised: {e}", exc_info=True)

    def _coerce_draft(self, artifact) -> Store:
        if isinstance(artifact, Store):
            return artifact.model_copy(deep=True)
        return Store.model_validate(artifact)

    # ========================================
    # PIPELINE
    # ========================================

    async def _pipeline(self, prompt, options):
        auto = bool(options.get("auto_approve"))
        placeholder = options.get("placeholder_url") or self.placeholder_url
        pod = bool(options.get("print_on_demand"))
        dropship_items = options.get("dropshipping_products") or []

        self._report(2, "Designing your store...")
        shell = await self._store_shell(prompt, options)
        context = {"name": shell["name"], "description": shell.get("description", ""), "type": shell.get("type")}
        self._report(10, f"Store concept ready: {shell['name']}")

        if pod:
            designs = await self._designs(prompt, options.get("pod_products") or [], options.get("reference_image"))
            self._report(30, "Designs ready. Please review them.")
            if not auto:
                designs = yield GenerationPause(GenerationStage.DESIGN_REVIEW, designs, self.progress,
                                                "Designs ready. Review and edit them, then continue.")
            products = await self._pod_products(prompt, designs)
        elif dropship_items:
            products = await self._dropshipping_products(dropship_items, context)
        else:
            products = await self._generated_products(prompt, context, options)

        self._report(70, f"{len(products)} products ready. Building collections...")
        target = 3 if (pod or dropship_items) else 2
        collections = await self._collections(context, products, target) if products else []

        draft = map_generated_store(shell, products, collections, {"placeholder_url": placeholder, "prompt": prompt})
        self._report(90, "Products generated. Please review and finalize.")
        if not auto:
            edited = yield GenerationPause(GenerationStage.PRODUCT_FINALIZATION, draft, self.progress,
                                           "Products generated. Please review and finalize.")
            draft = self._coerce_draft(edited)
            self._awaiting_finalize = True

        yield draft

    async def _store_shell(self, prompt, options) -> Dict:
        name_override = options.get("store_name")
        try:
            shell = await self.ai.generate_store_shell(prompt, name_override, options.get("product_type"))
        except StorefrontError as e:
            log_and_status(self.status_fn, f"Store concept generation failed, using defaults: {e}", "warning",
                           ui_msg="Could not generate a store concept; using defaults.")
            shell = {}

        shell = dict(shell)
        if name_override:
            shell["name"] = name_override
        shell["name"] = (shell.get("name") or "").strip() or prompt[:40].strip().title() or "My Store"
        shell.setdefault("description", prompt)
        if options.get("print_on_demand"):
            shell.setdefault("type", "print-on-demand")
        elif options.get("dropshipping_products"):
            shell.setdefault("type", "dropshipping")
        return shell

    async def _designs(self, prompt, pod_products, reference_image) -> List[Dict]:
        """One design per print-on-demand base product. A failed design leaves ``images`` empty."""
        designs = []
        total = max(len(pod_products), 1)
        for index, pod_product in enumerate(pod_products):
            name = pod_product.get("name") or "Product"
            self._report(10 + int(20 * index / total), f"Creating design for {name}...")
            images = []
            try:
                result = await self.ai.generate_design(f"{prompt} ({name})", reference_image)
                images = [f"data:{result.get('mime_type') or 'image/png'};base64,{result['image_data']}"]
            except (StorefrontError, KeyError) as e:
                log_and_status(self.status_fn, f"Design generation failed for {name}: {e}", "warning",
                               ui_msg=f"Design for {name} failed; you can upload one during review.")
            designs.append({"images": images, "prompt": prompt, "pod_product": dict(pod_product)})
        return designs

    async def _pod_products(self, prompt, designs) -> List[Dict]:
        products = []
        total = max(len(designs), 1)
        for index, design in enumerate(designs):
            pod_product = design.get("pod_product") or {}
            base_name = pod_product.get("name") or "Product"
            design_image = (design.get("images") or [None])[0]
            self._report(30 + int(20 * index / total), f"Visualizing design on {base_name}...")

            details, visualized = {}, None
            if design_image:
                try:
                    mockup = pod_product.get("image_url") or ""
                    if mockup and not is_data_uri(mockup):
                        mockup = await url_to_data_uri(mockup)
                    design_uri = design_image if is_data_uri(design_image) else await url_to_data_uri(design_image)
                    result = await self.ai.visualize_on_mockup(
                        design_uri, mockup, design.get("prompt") or prompt, base_name
                    )
                    visualized = result.get("visualized_image")
                    details = result.get("product_details") or {}
                except StorefrontError as e:
                    log_and_status(self.status_fn, f"Mockup failed for {base_name}: {e}", "warning",
                                   ui_msg=f"Could not visualize the design on {base_name}.")

            products.append({
                "name": details.get("title") or f"{base_name} with design",
                "description": details.get("description") or f"A unique {base_name}.",
                "price": details.get("price") or DEFAULT_PRODUCT_PRICE,
                "images": [img for img in (design_image, visualized) if img],
                "variants": details.get("variants") or [],
                "category": pod_product.get("category") or "Print on Demand",
                "is_print_on_demand": True,
                "pod_details": {
                    "original_design_image_url": design_image,
                    "design_prompt": design.get("prompt") or prompt,
                    "base_product_name": base_name,
                    "base_product_image_url": pod_product.get("image_url"),
                },
            })
        return products

    async def _dropshipping_products(self, items, context) -> List[Dict]:
        products = []
        total = max(len(items), 1)
        for index, entry in enumerate(items):
            item = entry.get("item", entry)
            title = item.get("title") or "Untitled Product"
            self._report(10 + int(50 * index / total), f"Writing copy for {title[:40]}...")

            product = {
                "name": title,
                "description": title,
                "price": ((item.get("sku") or {}).get("def") or {}).get("promotionPrice"),
                "images": [item["image"]] if item.get("image") else [],
                "source_id": item.get("itemId"),
                "is_dropshipping": True,
            }
            try:
                copy_result = await self.ai.generate_product_copy(product, context)
                product["description"] = copy_result.get("description") or title
            except StorefrontError as e:
                logging.warning(f"Product copy failed for '{title}', keeping title as description: {e}")
            products.append(product)
        return products

    async def _generated_products(self, prompt, context, options) -> List[Dict]:
        count = int(options.get("product_count") or DEFAULT_PRODUCT_COUNT)
        self._report(50, f"Generating {count} products...")
        try:
            products = await self.ai.generate_products(prompt, context, count)
        except StorefrontError as e:
            log_and_status(self.status_fn, f"Product generation failed: {e}", "warning",
                           ui_msg="Could not generate products; you can add them later.")
            return []
        return list(products)

    async def _collections(self, context, products, target) -> List[Dict]:
        """Ask for ``target`` distinct collections, with at most twice as many attempts."""
        collections: List[Dict] = []
        names = {p.get("name") for p in products}
        for attempt in range(target * 2):
            if len(collections) >= target:
                break
            self._report(70 + int(20 * len(collections) / target), "Organizing products into collections...")
            existing = [c["name"] for c in collections]
            try:
                raw = await self.ai.generate_collection(context, products, existing)
            except StorefrontError as e:
                logging.warning(f"Collection attempt {attempt + 1} failed: {e}")
                continue

            name = (raw.get("name") or "").strip()
            members = [n for n in raw.get("product_names") or [] if n in names]
            if not name or name in existing or not members:
                logging.info(f"Collection attempt {attempt + 1} skipped (duplicate or empty): '{name}'")
                continue
            collections.append({"name": name, "description": raw.get("description", ""), "product_ids": members})

        if len(collections) < target:
            logging.warning(f"Generated {len(collections)} of {target} collections")
        return collections
