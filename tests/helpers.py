BOT_ID = "bot-1"
CUSTOMER_CHAT = 42
ADMIN_CHAT = 900


def cart_payload(*lines):
    """lines: (product_id, name, price, qty)"""
    return {
        "items": [
            {
                "productId": pid,
                "quantity": qty,
                "product": {"id": pid, "name": name, "price": price, "article": f"A-{pid}", "images": []},
            }
            for (pid, name, price, qty) in lines
        ]
    }


def text_update(text, chat_id=CUSTOMER_CHAT, first_name="Ann"):
    return {
        "message": {
            "message_id": 1,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "first_name": first_name},
            "text": text,
        }
    }


def callback_update(data, chat_id=CUSTOMER_CHAT, message_id=10, callback_id="cb-1"):
    return {
        "callback_query": {
            "id": callback_id,
            "from": {"id": chat_id, "is_bot": False, "first_name": "Ann"},
            "message": {"message_id": message_id, "chat": {"id": chat_id, "type": "private"}},
            "data": data,
        }
    }


def sent_texts(bot, chat_id=None):
    out = []
    for call in bot.send_message.await_args_list:
        if chat_id is None or call.kwargs.get("chat_id") == chat_id:
            out.append(call.kwargs.get("text"))
    return out
