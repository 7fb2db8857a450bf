"""Logging the crawl browser into a product before discovery starts."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import List
from urllib.parse import urlparse

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from config.settings import settings
from crawler.dom import dismiss_cookie_banner
from models.mirror import AuthState, Product


class Authenticator(ABC):
    """Produces an authenticated page for a product, or reports failure."""

    @abstractmethod
    async def authenticate(self, page: Page, product: Product) -> bool: ...


class FormLoginAuthenticator(Authenticator):
    """
    Fills a conventional email/password form with the product's stored
    credentials. Handles two-step forms where the password field only
    appears after a continue button.
    """

    LOGIN_PATHS: List[str] = ["/login", "/signin", "/auth/login", "/account/login"]
    LOGIN_PATH_MARKERS = ("/login", "/signin", "/auth")

    async def authenticate(self, page: Page, product: Product) -> bool:
        if product.auth_state == AuthState.PUBLIC:
            logger.info("Product is public, skipping login")
            return True
        if not product.login_email or not product.login_password:
            logger.warning("No login credentials provided for authenticated product")
            return False

        logger.info(f"Attempting auto-login for {product.name}...")
        try:
            if not await self._open_login_page(page, product.base_url):
                logger.warning("Could not find login page")
                return False
            await dismiss_cookie_banner(page)
            await self._submit_credentials(page, product.login_email, product.login_password)
            await page.wait_for_url(
                self._left_login_page, timeout=settings.login_redirect_timeout_ms
            )
        except PlaywrightError as exc:
            logger.warning(f"Auto-login failed: {exc}")
            return False

        logger.success("Auto-login successful!")
        return True

    async def _open_login_page(self, page: Page, base_url: str) -> bool:
        for login_path in self.LOGIN_PATHS:
            try:
                await page.goto(
                    base_url + login_path,
                    wait_until="networkidle",
                    timeout=settings.login_page_timeout_ms,
                )
                return True
            except PlaywrightError:
                continue
        return False

    async def _submit_credentials(self, page: Page, email: str, password: str) -> None:
        email_input = (
            page.get_by_label(re.compile("email", re.IGNORECASE))
            .or_(page.get_by_placeholder(re.compile("email", re.IGNORECASE)))
            .or_(page.locator('input[type="email"]'))
            .or_(page.locator('input[name="email"]'))
            .or_(page.locator('input[name="username"]'))
            .first
        )
        await email_input.wait_for(timeout=settings.login_field_timeout_ms)
        await email_input.fill(email)

        password_input = (
            page.get_by_label(re.compile("password", re.IGNORECASE))
            .or_(page.get_by_placeholder(re.compile("password", re.IGNORECASE)))
            .or_(page.locator('input[type="password"]'))
            .or_(page.locator('input[name="password"]'))
            .first
        )
        if not await self._is_visible(password_input):
            # Two-step login
            await page.get_by_role(
                "button", name=re.compile("continue|next|submit", re.IGNORECASE)
            ).first.click()
            await password_input.wait_for(timeout=settings.password_step_timeout_ms)
        await password_input.fill(password)

        await page.get_by_role(
            "button", name=re.compile("log in|sign in|login|submit", re.IGNORECASE)
        ).first.click()

    @staticmethod
    async def _is_visible(locator) -> bool:
        try:
            await locator.wait_for(state="visible", timeout=1000)
            return True
        except PlaywrightError:
            return False

    @classmethod
    def _left_login_page(cls, url: str) -> bool:
        path = urlparse(url).path
        return not any(marker in path for marker in cls.LOGIN_PATH_MARKERS)

