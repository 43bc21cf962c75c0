"""
QR Code Generator Module - School Portal

This module produces the QR codes printed on student and teacher ID cards
and decodes what the attendance scanner reads back. A card encodes the
holder's visible identifier (student ID or employee ID); the scanner also
accepts the JSON payload format older cards carry.

Features:
- QR code PNG generation
- Base64 export for JSON responses
- Scan payload decoding
"""

import qrcode
import io
import base64
import json
from datetime import datetime
import logging
from typing import Optional, Dict, Any


class QRGenerator:
    """
    QR code generator for ID cards and attendance scanning.
    """

    def __init__(self, fill_color: str = '#1A365D', back_color: str = 'white'):
        """Initialize the QR code generator with default settings."""
        self.logger = logging.getLogger(__name__)

        # Default QR code settings
        self.default_settings = {
            'version': 1,  # Grows as needed with fit=True
            'error_correction': qrcode.constants.ERROR_CORRECT_H,
            'box_size': 10,  # Size of each box in pixels
            'border': 1,
            'fill_color': fill_color,
            'back_color': back_color
        }

    def generate_qr_png(self, payload: str, custom_settings: dict = None) -> bytes:
        """
        Render a payload as a PNG QR code.

        Args:
            payload (str): Text to encode
            custom_settings (dict): Overrides for the default settings

        Returns:
            bytes: PNG image data
        """
        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return buffer.getvalue()

    def generate_student_qr_code(self, student_data: dict) -> dict:
        """
        Generate the ID-card QR code for a student.

        Args:
            student_data (dict): Student row; must contain 'student_id'

        Returns:
            dict: QR code generation result with base64 image data
        """
        try:
            if not student_data.get('student_id'):
                raise ValueError("Missing required field: student_id")

            png = self.generate_qr_png(student_data['student_id'])

            result = {
                'success': True,
                'qr_data': student_data['student_id'],
                'image_base64': base64.b64encode(png).decode(),
                'filename': f"qr_{student_data['student_id']}_{datetime.now().strftime('%Y%m%d')}.png",
                'student_id': student_data['student_id'],
                'generated_at': datetime.now().isoformat()
            }

            self.logger.info(f"QR code generated for student {student_data['student_id']}")
            return result

        except Exception as e:
            self.logger.error(f"QR code generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e),
                'student_id': student_data.get('student_id', 'unknown')
            }

    def parse_scan_payload(self, raw: Optional[str]) -> Optional[str]:
        """
        Extract the visible identifier from scanned QR text.

        Args:
            raw (str): Text read by the scanner or typed in manually

        Returns:
            str: Identifier to look up, or None if the payload is empty
        """
        if raw is None:
            return None

        text = str(raw).strip()
        if not text:
            return None

        if text.startswith('{'):
            try:
                decoded: Dict[str, Any] = json.loads(text)
            except json.JSONDecodeError:
                self.logger.warning("Scanned payload looked like JSON but could not be decoded")
                return text

            for key in ('student_id', 'employee_id', 'id'):
                value = decoded.get(key)
                if value:
                    return str(value).strip()
            return None

        return text
